"""Constants for the rule checkpoint engine.

Named table names, category mappings and the tool catalog split between
mutating and read-only tools.
"""

# -----------------------------------------------------------------------------
# Entity Tables
# -----------------------------------------------------------------------------

FIELDS_TABLE: str = "Fields"
VIEWS_TABLE: str = "Views"
OBJECTS_TABLE: str = "Objects"
APPLICATIONS_TABLE: str = "Applications"
THEMES_TABLE: str = "Themes"
DECISION_TABLES_TABLE: str = "DecisionTables"

ENTITY_TABLES: tuple[str, ...] = (
    OBJECTS_TABLE,
    APPLICATIONS_TABLE,
    FIELDS_TABLE,
    VIEWS_TABLE,
    THEMES_TABLE,
    DECISION_TABLES_TABLE,
)

# Column holding the owning scope for each table (natural-key owner).
# Objects are owned by an application, everything else by an object
# except themes which hang off an application.
OWNER_COLUMNS: dict[str, str | None] = {
    OBJECTS_TABLE: "applicationid",
    APPLICATIONS_TABLE: None,
    FIELDS_TABLE: "objectid",
    VIEWS_TABLE: "objectid",
    THEMES_TABLE: "applicationid",
    DECISION_TABLES_TABLE: "objectid",
}


# -----------------------------------------------------------------------------
# Rule Type / Category Mappings
# -----------------------------------------------------------------------------

TABLE_RULE_TYPES: dict[str, str] = {
    FIELDS_TABLE: "Field",
    VIEWS_TABLE: "View",
    OBJECTS_TABLE: "Object",
    APPLICATIONS_TABLE: "Application",
    THEMES_TABLE: "Theme",
    DECISION_TABLES_TABLE: "DecisionTable",
}

TABLE_CATEGORIES: dict[str, str] = {
    FIELDS_TABLE: "data",
    VIEWS_TABLE: "ui",
    OBJECTS_TABLE: "workflow",
    APPLICATIONS_TABLE: "app",
    THEMES_TABLE: "theme",
    DECISION_TABLES_TABLE: "decision",
}

CATEGORY_NAMES: dict[str, str] = {
    "workflow": "Workflow",
    "ui": "View",
    "data": "Field",
    "decision": "Decision Table",
    "app": "Application",
    "theme": "Theme",
}

# Display order of categories inside an object group
OBJECT_CATEGORY_ORDER: tuple[str, ...] = ("workflow", "ui", "data", "decision", "theme")

OPERATION_DISPLAY_NAMES: dict[str, str] = {
    "insert": "Create",
    "update": "Update",
    "delete": "Delete",
}


# -----------------------------------------------------------------------------
# Tool Catalog
# -----------------------------------------------------------------------------

MUTATING_TOOLS: frozenset[str] = frozenset(
    {
        "createObject",
        "saveObject",
        "deleteObject",
        "saveFields",
        "deleteField",
        "saveView",
        "deleteView",
        "saveApplication",
        "deleteApplication",
        "saveTheme",
        "deleteTheme",
        "saveDecisionTable",
        "deleteDecisionTable",
    }
)

READ_ONLY_TOOLS: frozenset[str] = frozenset(
    {"listObjects", "getObject", "listFields", "listViews", "getApplication"}
)


# -----------------------------------------------------------------------------
# Session Defaults
# -----------------------------------------------------------------------------

DEFAULT_DESCRIPTION: str = "LLM Tool Execution"

# Maximum checkpoints returned by history queries
DEFAULT_HISTORY_LIMIT: int = 50

# Length of the tool-argument excerpt stored as user_command for MCP runs
MCP_COMMAND_EXCERPT: int = 100

# Columns that identify a row when no id is given, per table. Save tools
# upsert on these; capture looks rows up by them to decide insert vs update.
NATURAL_KEYS: dict[str, tuple[str, ...]] = {
    OBJECTS_TABLE: ("name", "applicationid"),
    APPLICATIONS_TABLE: ("name",),
    FIELDS_TABLE: ("name", "objectid"),
    VIEWS_TABLE: ("name", "objectid"),
    THEMES_TABLE: ("name", "applicationid"),
    DECISION_TABLES_TABLE: ("name", "objectid"),
}
