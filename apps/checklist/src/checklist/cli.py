from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from checklist.config import AppConfig, ConfigError, load_app_config
from checklist_templates import (
    ChecklistTemplate,
    DangerousCommandDetector,
    NestingDepthExceededError,
    ResourceLimiter,
    SandboxViolationError,
    Step,
    SubstitutionPreview,
    TemplateCache,
    TemplateLoader,
    TemplateSandbox,
    TemplateValidationError,
    VariableStore,
    VariableStoreError,
    VariableSubstitutor,
)
from checklist_templates.sandbox import sanitize_value
from perf_monitor import (
    PerformanceMonitor,
    PerformanceProfiler,
    PerformanceReport,
    ProfilerConfig,
    RegressionDetector,
    create_summary,
    format_memory,
    get_renderer,
    render_regression_report,
    set_global_monitor,
)

logger = logging.getLogger(__name__)

LOG_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_BLOCKING_REGRESSIONS: frozenset[str] = frozenset({"critical", "major"})


@dataclass(frozen=True)
class _Context:
    config: AppConfig
    monitor: PerformanceMonitor

    def loader(self, templates_dir: Path | None = None) -> TemplateLoader:
        return TemplateLoader(
            templates_dir or self.config.templates_dir,
            cache=TemplateCache(
                max_size=self.config.cache.max_size, max_age=self.config.cache.max_age
            ),
            monitor=self.monitor,
        )


def build_parser() -> argparse.ArgumentParser:
    """Build the checklist CLI argument parser."""
    parser = argparse.ArgumentParser(prog="checklist")
    parser.add_argument(
        "--config",
        type=Path,
        help="Config file (default: configs/checklist.yaml when present).",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        help="Logging level (default: $CHECKLIST_LOG_LEVEL or WARNING).",
    )
    parser.add_argument(
        "--perf-report",
        type=Path,
        help="Write this run's performance report as JSON after the command.",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    templates_p = sub.add_parser("templates", help="Discover, validate and render templates.")
    templates_sub = templates_p.add_subparsers(dest="templates_cmd", required=True)

    list_p = templates_sub.add_parser("list", help="List templates in the templates directory.")
    list_p.add_argument("--templates-dir", type=Path, help="Override the templates directory.")

    validate_p = templates_sub.add_parser("validate", help="Validate template files.")
    validate_p.add_argument("paths", nargs="+", type=Path)
    validate_p.add_argument("--templates-dir", type=Path, help="Override the templates directory.")

    show_p = templates_sub.add_parser("show", help="Print a template with inheritance resolved.")
    show_p.add_argument("path", type=Path)
    show_p.add_argument("--format", choices=["yaml", "json"], default="yaml")
    show_p.add_argument("--templates-dir", type=Path, help="Override the templates directory.")

    render_p = templates_sub.add_parser(
        "render", help="Render template commands with variables substituted."
    )
    render_p.add_argument("path", type=Path)
    render_p.add_argument(
        "--var",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Set a variable (repeatable).",
    )
    render_p.add_argument("--step", help="Render only this step id.")
    render_p.add_argument(
        "--preview", action="store_true", help="Show a substitution preview per command."
    )
    render_p.add_argument(
        "--save-vars",
        action="store_true",
        help="Persist --var values to the configured state file.",
    )
    render_p.add_argument("--templates-dir", type=Path, help="Override the templates directory.")

    perf_p = sub.add_parser("perf", help="Inspect performance reports.")
    perf_sub = perf_p.add_subparsers(dest="perf_cmd", required=True)

    report_p = perf_sub.add_parser("report", help="Render a performance report as a dashboard.")
    report_p.add_argument(
        "--input", type=Path, help="Saved report JSON (default: this run's monitor)."
    )
    report_p.add_argument("--format", choices=["console", "table", "json"])

    summary_p = perf_sub.add_parser("summary", help="Summarize a saved performance report.")
    summary_p.add_argument("report", type=Path)

    compare_p = perf_sub.add_parser("compare", help="Compare two reports for regressions.")
    compare_p.add_argument("current", type=Path)
    compare_p.add_argument("baseline", type=Path)
    compare_p.add_argument("--threshold", type=float, help="Regression threshold in percent.")

    perf_sub.add_parser("memory", help="Show memory usage of this process.")
    return parser


def _configure_logging(level_arg: str | None) -> None:
    level = level_arg or os.environ.get("CHECKLIST_LOG_LEVEL", "").strip().upper() or "WARNING"
    if level not in LOG_LEVELS:
        print(f"Ignoring unknown CHECKLIST_LOG_LEVEL={level!r}; using WARNING.", file=sys.stderr)
        level = "WARNING"
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _load_report(path: Path) -> PerformanceReport:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to parse report JSON {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ValueError(f"Performance report {path} must be a JSON object.")
    return PerformanceReport.from_dict(raw)


def _parse_vars(raw: list[str]) -> dict[str, str]:
    values: dict[str, str] = {}
    for item in raw:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Invalid --var {item!r}; expected NAME=VALUE.")
        values[name.strip()] = value
    return values


def _sanitized(value: Any) -> Any:
    if isinstance(value, str):
        return sanitize_value(value)
    if isinstance(value, (list, tuple)):
        return [sanitize_value(v) if isinstance(v, str) else v for v in value]
    return value


def _cmd_templates_list(args: argparse.Namespace, ctx: _Context) -> int:
    try:
        found = ctx.loader(args.templates_dir).discover()
    except (OSError, ValueError) as e:
        print(str(e), file=sys.stderr)
        return 2

    if not found:
        print("No templates found.", file=sys.stderr)
    for info in found:
        print(f"{info.id}\t{info.version}\t{info.name}\t{info.path}")
    return 0


def _cmd_templates_validate(args: argparse.Namespace, ctx: _Context) -> int:
    loader = ctx.loader(args.templates_dir)
    invalid = 0
    for path in args.paths:
        try:
            template = loader.load_resolved(path, skip_cache=True)
        except TemplateValidationError as e:
            invalid += 1
            print(f"{path}: invalid")
            for violation in e.violations:
                print(f"  - error: {violation}")
            for warning in e.details.get("warnings", []):
                print(f"  - warning: {warning}")
            continue
        except (OSError, ValueError) as e:
            invalid += 1
            print(f"{path}: invalid")
            print(f"  - error: {e}")
            continue

        print(f"{path}: ok ({template.id} {template.version})")
        for warning in loader.warnings_for(path):
            print(f"  - warning: {warning}")
    return 1 if invalid else 0


def _cmd_templates_show(args: argparse.Namespace, ctx: _Context) -> int:
    try:
        template = ctx.loader(args.templates_dir).load_resolved(args.path)
    except (OSError, ValueError) as e:
        print(str(e), file=sys.stderr)
        return 2

    data = template.to_dict()
    if args.format == "json":
        print(json.dumps(data, indent=2, ensure_ascii=False))
    else:
        print(yaml.safe_dump(data, sort_keys=False, allow_unicode=True), end="")
    return 0


def _select_steps(template: ChecklistTemplate, step_id: str | None) -> list[Step]:
    if step_id is None:
        return list(template.steps)
    step = template.step(step_id)
    if step is None:
        raise ValueError(f"Template {template.id!r} has no step {step_id!r}.")
    return [step]


def _load_saved_vars(ctx: _Context, cli_vars: dict[str, str]) -> VariableStore:
    """Saved state plus `--var` values, unsanitized; this is what `--save-vars` writes."""

    saved = VariableStore(ctx.config.state_file)
    if ctx.config.state_file is not None:
        saved.load()
    saved.update(dict(cli_vars))
    return saved


def _render_store(template: ChecklistTemplate, saved: VariableStore) -> VariableStore:
    store = VariableStore()
    for variable in template.variables:
        if variable.has_default:
            store.set(variable.name, _sanitized(variable.default))
    state = saved.to_dict()
    store.update({name: _sanitized(value) for name, value in state["global"].items()})
    for step_id, scope in state["steps"].items():
        store.update({name: _sanitized(value) for name, value in scope.items()}, step_id)
    return store


def _cmd_templates_render(args: argparse.Namespace, ctx: _Context) -> int:
    try:
        cli_vars = _parse_vars(args.var)
        template = ctx.loader(args.templates_dir).load_resolved(args.path)
        steps = _select_steps(template, args.step)
        saved = _load_saved_vars(ctx, cli_vars)
        store = _render_store(template, saved)
    except (OSError, ValueError, VariableStoreError) as e:
        print(str(e), file=sys.stderr)
        return 2

    sandbox = TemplateSandbox(ResourceLimiter(ctx.config.sandbox))
    substitutor = VariableSubstitutor(store, ctx.config.substitution)
    preview = SubstitutionPreview(substitutor, store)
    detector = DangerousCommandDetector()

    problems = 0
    print(f"{template.name} ({template.id} {template.version})")
    for step in steps:
        print(f"\n[{step.id}] {step.title}")
        if step.condition:
            try:
                active = sandbox.evaluate_condition(
                    step.condition, store.get_all(step.id), template.id
                )
            except SandboxViolationError as e:
                problems += 1
                print(f"  blocked condition: {e.violation}")
                continue
            if not active:
                print(f"  skipped: condition {step.condition} is false")
                continue

        for command in step.commands:
            try:
                sandbox.validate_expression(command.content, template.id)
                result = substitutor.substitute(command.content, step.id)
            except (SandboxViolationError, NestingDepthExceededError) as e:
                problems += 1
                print(f"  {command.id}: blocked: {e.message}")
                continue

            flags: list[str] = []
            if command.dangerous or detector.is_dangerous(result.output):
                flags.append("DANGEROUS")
            if command.requires_confirmation:
                flags.append("requires confirmation")
            suffix = f"  [{', '.join(flags)}]" if flags else ""
            print(f"  {command.id}: {result.output}{suffix}")
            for issue in result.errors:
                problems += 1
                print(f"    unresolved: {issue.message}")
            if args.preview:
                rendered = preview.format_for_terminal(preview.generate(command.content, step.id))
                print("\n".join(f"    {line}" for line in rendered.splitlines()))

    if args.save_vars:
        if ctx.config.state_file is None:
            print("--save-vars requires state_file in the config.", file=sys.stderr)
            return 2
        try:
            saved_path = saved.persist()
        except OSError as e:
            print(f"Failed to save variables: {e}", file=sys.stderr)
            return 2
        print(f"\nSaved variables to {saved_path}")

    return 1 if problems else 0


def _cmd_perf_report(args: argparse.Namespace, ctx: _Context) -> int:
    try:
        report = _load_report(args.input) if args.input else ctx.monitor.generate_report()
    except (OSError, ValueError) as e:
        print(str(e), file=sys.stderr)
        return 2

    dashboard = ctx.config.dashboard
    renderer = get_renderer(
        args.format or dashboard.display_mode,
        max_items=dashboard.max_display_items,
        show_trends=dashboard.show_trends,
    )
    print(renderer.render(report))
    return 0


def _cmd_perf_summary(args: argparse.Namespace, ctx: _Context) -> int:
    try:
        report = _load_report(args.report)
    except (OSError, ValueError) as e:
        print(str(e), file=sys.stderr)
        return 2
    print(create_summary(report, max_items=ctx.config.dashboard.max_display_items))
    return 0


def _cmd_perf_compare(args: argparse.Namespace, ctx: _Context) -> int:
    try:
        current = _load_report(args.current)
        baseline = _load_report(args.baseline)
    except (OSError, ValueError) as e:
        print(str(e), file=sys.stderr)
        return 2

    config = ctx.config.regression
    if args.threshold is not None:
        config = type(config)(
            threshold=args.threshold,
            min_samples=config.min_samples,
            confidence_level=config.confidence_level,
            enable_trend_analysis=config.enable_trend_analysis,
            trend_window=config.trend_window,
        )
    results = RegressionDetector(config).detect_regressions(current, baseline)
    print(render_regression_report(results))
    blocking = [r for r in results if r.has_regression and r.severity in _BLOCKING_REGRESSIONS]
    return 1 if blocking else 0


def _cmd_perf_memory(args: argparse.Namespace, ctx: _Context) -> int:
    snapshot = PerformanceProfiler(ProfilerConfig()).take_snapshot()
    print(f"rss\t{format_memory(snapshot.rss)}")
    print(f"vms\t{format_memory(snapshot.vms)}")
    return 0


def _write_perf_report(path: Path, monitor: PerformanceMonitor) -> int:
    report = monitor.generate_report()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(report.to_dict(), indent=2) + "\n", encoding="utf-8")
    except OSError as e:
        print(f"Failed to write performance report {path}: {e}", file=sys.stderr)
        return 2
    logger.info("Wrote performance report to %s", path)
    return 0


def _dispatch(args: argparse.Namespace, ctx: _Context) -> int:
    if args.cmd == "templates":
        if args.templates_cmd == "list":
            return _cmd_templates_list(args, ctx)
        if args.templates_cmd == "validate":
            return _cmd_templates_validate(args, ctx)
        if args.templates_cmd == "show":
            return _cmd_templates_show(args, ctx)
        if args.templates_cmd == "render":
            return _cmd_templates_render(args, ctx)
        return 2
    if args.cmd == "perf":
        if args.perf_cmd == "report":
            return _cmd_perf_report(args, ctx)
        if args.perf_cmd == "summary":
            return _cmd_perf_summary(args, ctx)
        if args.perf_cmd == "compare":
            return _cmd_perf_compare(args, ctx)
        if args.perf_cmd == "memory":
            return _cmd_perf_memory(args, ctx)
        return 2
    return 2


def run(args: argparse.Namespace) -> int:
    _configure_logging(args.log_level)
    try:
        config = load_app_config(args.config)
    except ConfigError as e:
        print(str(e), file=sys.stderr)
        return 2

    monitor = PerformanceMonitor(config.performance)
    set_global_monitor(monitor)
    try:
        with monitor.measure(f"cli-{args.cmd}"):
            code = _dispatch(args, _Context(config=config, monitor=monitor))
    finally:
        set_global_monitor(None)

    if args.perf_report is not None:
        write_code = _write_perf_report(args.perf_report, monitor)
        code = code or write_code
    return code


def main(argv: list[str] | None = None) -> None:
    """Run the CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)
    raise SystemExit(run(args))


if __name__ == "__main__":
    main()
