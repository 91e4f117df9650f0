"""Civic issue catalog: departments, priorities and the three-level category tree."""

from __future__ import annotations

from typing import Dict, List

from .models import CategoryPath

DEPARTMENTS: List[str] = [
    "Public Works Department",
    "Municipal Corporation",
    "Electricity Board",
    "Water Supply Department",
    "Sanitation Department",
    "Traffic Police",
    "Other",
]

PRIORITIES: List[str] = ["Low", "Medium", "High", "Urgent"]

CIVIC_CATEGORIES: Dict[str, Dict[str, List[str]]] = {
    "Roads & Infrastructure": {
        "Potholes & Road Damage": [
            "Large Potholes",
            "Multiple Potholes",
            "Road Cracks",
            "Road Subsidence",
            "Road Erosion",
            "Missing Road Signs",
        ],
        "Street Lights": [
            "Malfunctioning Street Light",
            "Completely Dark Street Light",
            "Flickering Street Light",
            "Damaged Street Light Pole",
            "Missing Street Light",
        ],
        "Traffic Signals": [
            "Malfunctioning Traffic Signal",
            "Missing Traffic Signal",
            "Wrong Signal Timing",
            "Damaged Signal Pole",
        ],
    },
    "Sanitation & Waste": {
        "Garbage Collection": [
            "Overflowing Garbage Bin",
            "Irregular Garbage Collection",
            "Garbage Not Collected",
            "Illegal Dumping",
            "Garbage on Streets",
        ],
        "Public Toilets": [
            "Dirty Public Toilet",
            "No Water in Toilet",
            "Broken Toilet Fixtures",
            "No Electricity in Toilet",
            "Toilet Door Broken",
        ],
        "Sewage & Drainage": [
            "Blocked Drain",
            "Overflowing Sewage",
            "Bad Odor from Drains",
            "Water Logging",
            "Broken Manhole Cover",
        ],
    },
    "Water Supply": {
        "Water Shortage": [
            "No Water Supply",
            "Low Water Pressure",
            "Water Supply Interruption",
            "Contaminated Water",
        ],
        "Pipeline Issues": [
            "Leaking Water Pipe",
            "Broken Water Pipe",
            "Water Pipe Damage",
            "Unauthorized Connection",
        ],
    },
    "Electricity & Power": {
        "Power Outages": [
            "Frequent Power Cuts",
            "Long Duration Outage",
            "Power Fluctuations",
            "Low Voltage",
        ],
        "Street Lighting": [
            "Dark Street Lights",
            "Flickering Street Lights",
            "Damaged Light Poles",
            "Wrong Light Timing",
        ],
    },
    "Public Safety": {
        "Road Safety": [
            "Missing Speed Breakers",
            "Broken Guard Rails",
            "Dangerous Road Conditions",
            "Poor Visibility",
        ],
        "Public Nuisance": [
            "Illegal Parking",
            "Encroachment",
            "Obstructed Pathways",
            "Dangerous Structures",
        ],
    },
    "Other Issues": {
        "General Maintenance": [
            "Broken Benches",
            "Damaged Fencing",
            "Park Maintenance",
            "Playground Equipment",
        ],
        "Environmental": [
            "Illegal Construction",
            "Tree Cutting",
            "Pollution Issues",
            "Noise Pollution",
        ],
    },
}


def main_categories() -> List[str]:
    return list(CIVIC_CATEGORIES)


def sub_categories(main_category: str) -> List[str]:
    return list(CIVIC_CATEGORIES.get(main_category, {}))


def specific_issues(main_category: str, sub_category: str) -> List[str]:
    return list(CIVIC_CATEGORIES.get(main_category, {}).get(sub_category, []))


def is_known_path(path: CategoryPath) -> bool:
    """True when every level of ``path`` exists in the catalog."""
    return path.specific_issue in specific_issues(path.main_category, path.sub_category)
