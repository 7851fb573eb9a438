from __future__ import annotations

import argparse
import logging
from typing import Any, Dict, List, Optional, Sequence

from .config import load_config
from .context import HostCtx, build_host_ctx
from .logging_utils import DEFAULT_LOG_PATH, configure_logging
from .pipeline import GROUPS, Step, run_pipeline, select_steps
from .state_store import ensure_defaults, load_state, save_state
from .steps import (
    AptPrerequisitesStep,
    ConfigureDnsStep,
    ConfigureSplunkInputsStep,
    DownloadOsqueryConfigStep,
    FixEth1StaticIpStep,
    InstallFleetStep,
    InstallGuacamoleStep,
    InstallSplunkStep,
    InstallSuricataStep,
    InstallVelociraptorStep,
    InstallZeekStep,
    ModifyMotdStep,
    PrerequisiteCheckStep,
)

logger = logging.getLogger(__name__)


DEFAULT_STATE_PATH = "/var/lib/labhost-installer/state.json"


def build_steps() -> List[Step]:
    return [
        ConfigureDnsStep(),
        AptPrerequisitesStep(),
        ModifyMotdStep(),
        PrerequisiteCheckStep(),
        FixEth1StaticIpStep(),
        InstallSplunkStep(),
        DownloadOsqueryConfigStep(),
        InstallFleetStep(),
        InstallVelociraptorStep(),
        InstallSuricataStep(),
        InstallZeekStep(),
        InstallGuacamoleStep(),
        ConfigureSplunkInputsStep(),
    ]


def run(
    selector: Optional[str] = None,
    *,
    config_path: Optional[str] = None,
    state_path: str = DEFAULT_STATE_PATH,
    log_path: str = DEFAULT_LOG_PATH,
    root: Optional[str] = None,
    force: bool = False,
    dry_run: bool = False,
    ctx: Optional[HostCtx] = None,
    steps: Optional[Sequence[Step]] = None,
) -> Dict[str, Any]:
    """Run the whole pipeline, or only what `selector` names, persisting state for resume."""

    actual_log_path = configure_logging(log_path=log_path)

    state = ensure_defaults(load_state(state_path))
    exe = state.setdefault("execution", {})
    exe.setdefault("paths", {})["log_path_actual"] = actual_log_path
    exe["selector"] = selector

    owned_ctx = ctx is None
    try:
        if ctx is None:
            cfg = load_config(config_path, overrides={"root": root, "dry_run": dry_run or None})
            ctx = build_host_ctx(cfg)
        # Secrets stay out of the state file.
        state["config"] = dict(ctx.cfg.raw)
        selected = select_steps(steps if steps is not None else build_steps(), selector)

        result = run_pipeline(
            ctx=ctx,
            state=state,
            steps=selected,
            force=force,
            checkpoint=lambda s: save_state(state_path, s),
        )
        state = result.state
        summary = state.setdefault("execution", {}).setdefault("summary", {})
        summary["ran_steps"] = result.ran_steps
        summary["skipped_steps"] = result.skipped_steps
        summary["abandoned_steps"] = result.abandoned_steps
        logger.info(
            "Provisioning finished (ran=%d skipped=%d abandoned=%d)",
            len(result.ran_steps),
            len(result.skipped_steps),
            len(result.abandoned_steps),
        )
        return state
    except Exception as e:
        logger.exception("Provisioning failed")
        state.setdefault("execution", {}).setdefault("errors", []).append(
            {
                "step": (state.get("execution") or {}).get("current_step"),
                "error": str(e),
            }
        )
        raise
    finally:
        save_state(state_path, state)
        if owned_ctx and ctx is not None:
            ctx.http.close()


def _print_stages() -> None:
    for step in build_steps():
        markers = ", ".join(step.markers) or "-"
        print(f"{step.step_id:<42} {step.name:<38} {markers}")
    print()
    print(f"{'main':<42} (every stage)")
    for group, names in GROUPS.items():
        print(f"{group:<42} {', '.join(names)}")


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="labhost-installer")
    p.add_argument("selector", nargs="?", default=None, help="Stage name, step id or group to run (default: all)")
    p.add_argument("--config", default=None, help="Path to lab config (yaml)")
    p.add_argument("--state", default=DEFAULT_STATE_PATH, help="Path to installer state (json|yaml)")
    p.add_argument("--log", default=DEFAULT_LOG_PATH, help="Path to installer log")
    p.add_argument("--root", default=None, help="Host root the stages write under (default: /)")
    p.add_argument("--force", action="store_true", help="Re-run stages even if already completed")
    p.add_argument("--dry-run", action="store_true", help="Log commands and edits without executing them")
    p.add_argument("--list", action="store_true", help="List stages and groups, then exit")

    args = p.parse_args(argv)

    if args.list:
        _print_stages()
        return 0

    try:
        run(
            args.selector,
            config_path=args.config,
            state_path=args.state,
            log_path=args.log,
            root=args.root,
            force=args.force,
            dry_run=args.dry_run,
        )
    except Exception:
        # run() already logged it with its traceback and recorded it in the state.
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
