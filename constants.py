# constants.py
# Reference data shared by the oracle prompts, the session flows and the catalog route.

from typing import Any, Dict, List

# ---- Sections ---------------------------------------------------------------
SECTIONS: List[str] = ["Technical", "Coding", "Quantitative", "Reasoning"]
SECTION_KEYS: Dict[str, str] = {
    "Technical": "technical",
    "Coding": "coding",
    "Quantitative": "quantitative",
    "Reasoning": "reasoning",
}
CODING_SECTION = "Coding"

# Questions per section requested from the oracle
SECTION_COUNTS: Dict[str, int] = {"technical": 5, "coding": 2, "quantitative": 5, "reasoning": 5}

DEFAULT_EXAM_MINUTES = 90
PRACTICE_SET_SIZE = 5

# ---- Position levels ("DNA" drives difficulty mix in prompts) ---------------
LEVEL_DNA: Dict[str, Dict[str, Any]] = {
    "Intern / Trainee": {
        "focus": "Fundamental syntax, basic logic, and arithmetic",
        "topics": ["Variables", "Simple Loops", "Basic Arithmetic", "Basic SQL"],
        "difficulty": {"veryEasy": 50, "easy": 40, "medium": 10, "hard": 0, "veryHard": 0, "ultraHard": 0},
        "time_multiplier": 1.5,
    },
    "Fresher / Graduate": {
        "focus": "DSA basics, coding accuracy, and quantitative aptitude",
        "topics": ["Arrays", "Strings", "HashMaps", "Recursion", "Basic Sorting"],
        "difficulty": {"veryEasy": 10, "easy": 40, "medium": 40, "hard": 10, "veryHard": 0, "ultraHard": 0},
        "time_multiplier": 1.2,
    },
    "SDE-1 / Junior": {
        "focus": "Algorithmic efficiency and problem solving",
        "topics": ["Sliding Window", "Two Pointers", "Trees", "Graphs", "DP"],
        "difficulty": {"veryEasy": 0, "easy": 20, "medium": 50, "hard": 25, "veryHard": 5, "ultraHard": 0},
        "time_multiplier": 1.0,
    },
    "SDE-2 / Mid": {
        "focus": "Advanced DSA, optimization, and system thinking",
        "topics": ["Advanced DP", "Graph Coloring", "Concurrency", "Low-Level Design"],
        "difficulty": {"veryEasy": 0, "easy": 0, "medium": 30, "hard": 50, "veryHard": 20, "ultraHard": 0},
        "time_multiplier": 1.0,
    },
    "Senior / Lead": {
        "focus": "System design, complex scaling, and architectural tradeoffs",
        "topics": ["High-Level Design", "Distributed Systems", "Caching Strategies", "Security"],
        "difficulty": {"veryEasy": 0, "easy": 0, "medium": 0, "hard": 40, "veryHard": 40, "ultraHard": 20},
        "time_multiplier": 1.0,
    },
    "Architect / Principal": {
        "focus": "Enterprise architecture, reliability, and extreme performance",
        "topics": ["Consensus Protocols", "CAP Theorem", "Fault Tolerance", "Multi-region scaling"],
        "difficulty": {"veryEasy": 0, "easy": 0, "medium": 0, "hard": 0, "veryHard": 40, "ultraHard": 60},
        "time_multiplier": 1.2,
    },
}
POSITION_LEVELS: List[str] = list(LEVEL_DNA.keys())
DEFAULT_LEVEL = "SDE-1 / Junior"
DEFAULT_ROLE = "Software Development Engineer"

COMPANIES: List[Dict[str, Any]] = [
    {"name": "Google", "common_topics": ["Graphs", "Tries", "Complex DP"], "vibe": "Extremely algorithmic, emphasis on clean code"},
    {"name": "Amazon", "common_topics": ["Trees", "Heaps", "System Design"], "vibe": "Heavy focus on Leadership Principles and scale"},
    {"name": "Meta", "common_topics": ["Arrays", "Strings", "Binary Search"], "vibe": "Fast coding, accuracy under pressure"},
    {"name": "Microsoft", "common_topics": ["Linked Lists", "Trees", "Logic Puzzles"], "vibe": "Fundamental focus, OS concepts"},
    {"name": "Netflix", "common_topics": ["Concurrency", "Distributed Systems", "System Design"], "vibe": "Efficiency and culture-fit focused"},
    {"name": "Uber", "common_topics": ["Graph Algorithms", "Geometry", "Real-time Systems"], "vibe": "Hard algorithmic challenges"},
]

def company_profile(name: str) -> Dict[str, Any]:
    key = (name or "").strip().lower()
    for c in COMPANIES:
        if c["name"].lower() == key:
            return c
    return {}

# ---- Practice ---------------------------------------------------------------
DSA_TOPICS: List[str] = [
    "Arrays & Hashing", "Two Pointers", "Sliding Window", "Stack", "Binary Search",
    "Linked List", "Trees", "Heaps", "Backtracking", "Graphs",
    "Dynamic Programming", "Bit Manipulation", "Advanced Graphs", "Math & Geometry",
]
PRACTICE_DIFFICULTIES: List[str] = ["Easy", "Medium", "Hard"]

# ---- Editor languages -------------------------------------------------------
SUPPORTED_LANGUAGES: List[Dict[str, str]] = [
    {"id": "javascript", "name": "JavaScript"},
    {"id": "typescript", "name": "TypeScript"},
    {"id": "python", "name": "Python"},
    {"id": "java", "name": "Java"},
    {"id": "cpp", "name": "C++"},
]
LANGUAGE_IDS = [l["id"] for l in SUPPORTED_LANGUAGES]
DEFAULT_LANGUAGE = "python"

STARTER_TEMPLATES: Dict[str, str] = {
    "python": (
        "import sys\nimport math\nfrom collections import *\n\n"
        "def solve():\n    # Implement core logic here\n    pass\n\n"
        "if __name__ == \"__main__\":\n    solve()"
    ),
    "javascript": (
        "const fs = require('fs');\n\n"
        "function solve() {\n    // Implement logic below\n}\n\nsolve();"
    ),
    "typescript": (
        "import * as fs from 'fs';\n\n"
        "function solve(): void {\n    // Core logic\n}\n\nsolve();"
    ),
    "java": (
        "import java.util.*;\nimport java.io.*;\n\n"
        "public class Solution {\n    public static void main(String[] args) {\n"
        "        Scanner sc = new Scanner(System.in);\n    }\n}"
    ),
    "cpp": (
        "#include <iostream>\n#include <vector>\n#include <string>\n#include <algorithm>\n\n"
        "using namespace std;\n\nint main() {\n    ios_base::sync_with_stdio(false);\n"
        "    cin.tie(NULL);\n    return 0;\n}"
    ),
}

def starter_code(question: Dict[str, Any], language: str) -> str:
    """Question's own template for `language`, else the global one."""
    own = (question.get("starterCodes") or {}).get(language)
    if own:
        return own
    return STARTER_TEMPLATES.get(language, "")
