"""Rule tool catalog."""

from .catalog import RuleTools, Tool, create_rule_tools

__all__ = ["RuleTools", "Tool", "create_rule_tools"]
