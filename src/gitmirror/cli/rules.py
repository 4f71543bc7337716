"""Rule commands for the gitmirror CLI.

Commands:
- check-rules: Validate rules without touching any repository
"""

from __future__ import annotations

import click

from gitmirror.core.rules import RuleError, RuleSet, format_rule


@click.command("check-rules")
@click.argument("rules", nargs=-1, required=True)
def check_rules(rules: tuple[str, ...]) -> None:
    """Parse each RULE and print it in normalized form."""
    try:
        rule_set = RuleSet.parse(rules)
    except RuleError as e:
        raise click.BadParameter(str(e), param_hint="RULE") from e
    for rule in rule_set.rules:
        click.echo(format_rule(rule))
    click.echo(f"{len(rule_set)} rules OK")
