"""Human readable output for plans and apply reports."""

import json
from typing import Any

from msglog_infrastructure.engine.executor import ApplyReport, OperationStatus
from msglog_infrastructure.engine.planner import Action, Operation, Plan

MAX_VALUE_WIDTH = 72

STATUS_SYMBOLS = {
    OperationStatus.succeeded: "ok",
    OperationStatus.failed: "FAILED",
    OperationStatus.skipped: "skipped",
}


def _format_value(value: Any) -> str:
    if value is None:
        return "(none)"
    if isinstance(value, dict) and set(value) == {"$ref"}:
        return f"${{{value['$ref']}}}"
    rendered = json.dumps(value, sort_keys=True, default=str)
    if len(rendered) > MAX_VALUE_WIDTH:
        rendered = rendered[: MAX_VALUE_WIDTH - 3] + "..."
    return rendered


def _symbol(operation: Operation) -> str:
    if operation.replacement:
        return "-/+" if operation.action == Action.create else "-  "
    return {Action.create: "+  ", Action.update: "~  ", Action.delete: "-  "}[
        operation.action
    ]


def render_plan(plan: Plan) -> str:
    if plan.is_empty:
        return "No changes. Infrastructure matches the declared configuration."
    lines = []
    for operation in plan.operations:
        header = f"{_symbol(operation)} {operation.name} ({operation.type.value})"
        if operation.replacement:
            verb = "recreate" if operation.action == Action.create else "destroy"
            header += f" [{verb} for replacement]"
        elif operation.action == Action.delete:
            header += " [destroy]"
        lines.append(header)
        if operation.reason and (operation.replacement or operation.action == Action.delete):
            lines.append(f"      # {operation.reason}")
        if operation.action == Action.delete:
            continue
        for change in operation.changes:
            marker = " (forces replacement)" if change.forces_replacement else ""
            lines.append(
                f"      {change.attribute}: {_format_value(change.before)} -> "
                f"{_format_value(change.after)}{marker}"
            )
    summary = plan.summary()
    lines.append("")
    lines.append(
        f"Plan: {summary['add']} to add, {summary['change']} to change, "
        f"{summary['replace']} to replace, {summary['destroy']} to destroy."
    )
    return "\n".join(lines)


def render_report(report: ApplyReport) -> str:
    if not report.results:
        return "Nothing to apply."
    lines = []
    for result in report.results:
        line = f"{result.action.value:<6} {result.name}: {STATUS_SYMBOLS[result.status]}"
        if result.attempts > 1:
            line += f" after {result.attempts} attempts"
        if result.error:
            line += f" ({result.error})"
        lines.append(line)
    counts = {
        status: len(report.by_status(status)) for status in OperationStatus
    }
    lines.append("")
    lines.append(
        f"Apply complete: {counts[OperationStatus.succeeded]} succeeded, "
        f"{counts[OperationStatus.failed]} failed, "
        f"{counts[OperationStatus.skipped]} skipped."
    )
    return "\n".join(lines)
