"""Configuration constants for the law firm multiplex network dataset."""

from pathlib import Path

DATA_DIR = Path("data")

LAYERS = ("advice", "cowork", "friendship")

EDGE_FILES = {
    "advice": "advice.csv",
    "cowork": "cowork.csv",
    "friendship": "friendship.csv",
}
ATTRIBUTE_FILE = "attributes.csv"

REQUIRED_ATTRIBUTE_COLUMNS = ("id", "status", "gender", "office", "seniority", "age", "practice")
OPTIONAL_ATTRIBUTE_COLUMNS = ("law_school",)

# Integer codes in attributes.csv -> labels used everywhere downstream
ATTRIBUTE_LABELS: dict[str, dict[int, str]] = {
    "status": {1: "Partner", 2: "Associate"},
    "gender": {1: "Male", 2: "Female"},
    "office": {1: "Boston", 2: "Hartford", 3: "Providence"},
    "practice": {1: "Litigation", 2: "Corporate"},
    "law_school": {1: "Harvard/Yale", 2: "UConn", 3: "Other"},
}

CATEGORICAL_ATTRIBUTES = ("gender", "office", "status", "practice")
NUMERIC_ATTRIBUTES = ("age", "seniority")
