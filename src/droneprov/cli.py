# cli.py
from __future__ import annotations

import json
import logging
import signal
import socket
import sys
import threading
from pathlib import Path
from typing import Optional

import click

from droneprov import __version__
from droneprov.compiler import DEFAULT_STAGE, LABEL_PIPELINE_FILE, Compiler, label_steps, load_pipelines, lookup
from droneprov.config import DEFAULT_PIPELINE_FILE, ExecConfig, parse_pairs
from droneprov.errors import DroneProvError, StageNotFoundError, UnknownStepError
from droneprov.execer import Execer
from droneprov.log import log_setup
from droneprov.model import Build, State
from droneprov.provenance import generate_statement
from droneprov.registry import DigestResolver, RegistryClient
from droneprov.selection import apply_selection, stage_roster
from droneprov.streamer import JSONFileStreamer, MultiStreamer, read_records
from droneprov.ui.console import Console, ConsoleStreamer, get_console, set_console

log = logging.getLogger(__name__)


def dump(v: dict) -> None:
    json.dump(v, sys.stdout, indent=2)
    sys.stdout.write("\n")


def _install_interrupt(execer: Execer):
    """Cancel the execer on SIGINT. Returns the previous handler (or None off the main thread)."""
    if threading.current_thread() is not threading.main_thread():
        return None

    def _handler(signum, frame):
        print("received signal, terminating process", file=sys.stderr)
        execer.cancel()

    return signal.signal(signal.SIGINT, _handler)


def execute(
    cfg: ExecConfig,
    *,
    resolver: Optional[DigestResolver] = None,
    console: Optional[Console] = None,
) -> int:
    """
    Run one stage of a pipeline file and return the process exit code.

    Setup errors (missing file, unknown stage, bad resume-at) raise before
    any step runs. Errors while executing dump the state and re-raise.
    """
    console = console or get_console()

    items = load_pipelines(cfg.source)
    pipeline = lookup(cfg.stage, items)
    build = Build(id=cfg.build_id, params=dict(cfg.params))

    comp = Compiler(
        environ=cfg.environ,
        labels={LABEL_PIPELINE_FILE: str(cfg.source.resolve())},
    )
    spec = comp.compile(pipeline, build)
    label_steps(spec, pipeline, include=cfg.include, exclude=cfg.exclude)

    spec.steps = apply_selection(
        spec.steps,
        include=cfg.include,
        exclude=cfg.exclude,
        resume_at=cfg.resume_at,
    )
    state = State(
        build=build,
        stage=stage_roster(pipeline.name, spec.steps),
        system={"host": socket.gethostname(), "version": __version__},
    )

    console.print_run_started(
        source=str(cfg.source),
        stage=pipeline.name,
        step_count=len(spec.steps),
        build_id=build.id,
    )
    console.print_plan(spec.steps)

    file_streamer = JSONFileStreamer(cfg.pipeline_id, cfg.logs_dir)
    console.print_debug(f"step logs: {file_streamer.log_file}")
    streamer = MultiStreamer(file_streamer, ConsoleStreamer(console)) if cfg.echo else file_streamer
    execer = Execer(streamer, procs=cfg.procs, workdir=cfg.workdir, console=console)

    def _on_timeout():
        log.error("build timed out after %ss", cfg.timeout)
        execer.cancel()

    timer = threading.Timer(cfg.timeout, _on_timeout)
    timer.daemon = True
    previous = _install_interrupt(execer)
    timer.start()
    try:
        execer.exec(spec, state)
    except Exception:
        dump(state.to_dict())
        raise
    finally:
        timer.cancel()
        if previous is not None:
            signal.signal(signal.SIGINT, previous)
        file_streamer.close()

    console.print_results(state.stage)
    console.print_info(f"Logs: {file_streamer.log_file}")

    if cfg.provenance:
        generate_statement(cfg.source, pipeline, build, spec.steps, resolver or RegistryClient())

    return 1 if state.stage.status.failing else 0


@click.group()
@click.option("--debug", is_flag=True, default=False, help="Enable debug logging and stack traces")
@click.option("--trace", is_flag=True, default=False, help="Enable trace logging")
@click.pass_context
def cli(ctx, debug, trace):
    """droneprov: run a pipeline stage locally and record its provenance."""
    console = Console(debug=debug or trace)
    set_console(console)
    log_setup("trace" if trace else "debug" if debug else "info")
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["trace"] = trace


@cli.command("exec")
@click.argument("source", required=False, default=DEFAULT_PIPELINE_FILE, type=click.Path(dir_okay=False))
@click.option("--pipeline", "stage", default=None, help="Name of the pipeline to execute")
@click.option("--include", multiple=True, help="Name of steps to include")
@click.option("--exclude", multiple=True, help="Name of steps to exclude")
@click.option("--resume-at", default=None, help="Name of step to resume at")
@click.option("--timeout", default=3600.0, type=float, show_default=True, help="Build timeout in seconds")
@click.option("--procs", default=1, type=int, show_default=True, help="Number of steps to run in parallel")
@click.option("--build-id", default=1, type=int, show_default=True, help="Numeric build identifier")
@click.option("--param", "params", multiple=True, help="Build parameter KEY=VALUE")
@click.option("--env", "environ", multiple=True, help="Environment variable KEY=VALUE for every step")
@click.option("--logs-dir", default=None, envvar="DRONE_CI_LOGS_DIR", help="Directory for JSON step logs")
@click.option("--pipeline-id", default=None, help="Log file name (defaults to a hash of file and stage)")
@click.option("--provenance/--no-provenance", default=True, show_default=True, help="Write the provenance statement")
@click.option("--echo/--no-echo", default=True, show_default=True, help="Echo step output to the console")
@click.pass_context
def exec_(ctx, source, stage, include, exclude, resume_at, timeout, procs, build_id, params, environ,
          logs_dir, pipeline_id, provenance, echo):
    """Execute a local build of PIPELINE_FILE (default .drone.py)."""
    console = get_console()

    if not stage:
        log.info("No stage specified, assuming '%s'", DEFAULT_STAGE)
        stage = DEFAULT_STAGE

    try:
        params_d = parse_pairs(params, "parameter")
        environ_d = parse_pairs(environ, "environment variable")
    except ValueError as e:
        raise click.BadParameter(str(e))

    cfg = ExecConfig(
        source=Path(source),
        stage=stage,
        include=list(include),
        exclude=list(exclude),
        resume_at=resume_at,
        timeout=timeout,
        procs=procs,
        build_id=build_id,
        params=params_d,
        environ=environ_d,
        logs_dir=Path(logs_dir).expanduser() if logs_dir else None,
        pipeline_id=pipeline_id,
        provenance=provenance,
        echo=echo,
        debug=ctx.obj.get("debug", False),
        trace=ctx.obj.get("trace", False),
    )

    try:
        code = execute(cfg, console=console)
    except FileNotFoundError as e:
        console.print_error(
            "Pipeline file not found",
            str(e),
            suggestion="Create a pipeline file or pass its path:\n  droneprov exec path/to/.drone.py",
        )
        sys.exit(1)
    except StageNotFoundError as e:
        console.print_error(
            "Stage not found",
            str(e),
            suggestion="Select a stage with --pipeline <name>",
        )
        sys.exit(1)
    except UnknownStepError as e:
        console.print_error("Unknown step", str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except (DroneProvError, OSError, TypeError) as e:
        console.print_exception(e)
        sys.exit(1)

    sys.exit(code)


@cli.command()
@click.argument("logfile", type=click.Path(exists=True, dir_okay=False))
@click.option("--step", default=None, help="Only show lines of this step")
def logs(logfile, step):
    """Print the records of a JSON step log file."""
    for record in read_records(logfile):
        if step and record.get("stepName") != step:
            continue
        click.echo(f"[{record.get('stepName')}:{record.get('pos')}] {record.get('line')}")


@cli.command()
def version():
    """Print the droneprov version."""
    click.echo(__version__)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
