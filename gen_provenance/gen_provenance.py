import sys
from pathlib import Path

import click

from .cli_utils import reconstruct_command_line, status_color
from .errors import GenProvenanceError
from .logging_utils import configure_logging
from .pipeline import (
    GenerationEngine,
    ProvenanceConfig,
    TemplateGenerator,
    compute_file_diff,
    detect_file_changes,
    parse_conflict_markers,
    restore_pristine,
    scan,
    scan_targets,
)
from .pipeline.identity import extract_generated_id
from .pipeline.store import GitRepository, ProvenanceStore
from .utils import decode_text, to_posix_relpath


def _load_engine(config_path: str, **overrides) -> GenerationEngine:
    config = ProvenanceConfig.load(config_path)
    for key, value in overrides.items():
        setattr(config.remote, key, value)
    return GenerationEngine(config, TemplateGenerator())


def _working_id(output_dir: Path, path: str) -> str | None:
    try:
        return extract_generated_id((output_dir / path).read_bytes())
    except FileNotFoundError:
        return None


@click.group()
@click.option("--verbose", "-v", count=True, help="Increase log verbosity (-v info, -vv debug)")
@click.version_option(package_name="gen_provenance")
def cli(verbose):
    """Regenerate code while preserving hand edits, with pristine history kept in git."""
    configure_logging(verbose)


@cli.command()
@click.argument("config", type=click.Path(exists=True, dir_okay=False, resolve_path=True))
@click.option("--target", "-t", "targets", multiple=True, help="Target id to generate (repeatable, default: all)")
@click.option("--offline", is_flag=True, default=False, help="Neither fetch nor publish provenance refs")
def run(config, targets, offline):
    """Generate targets and merge the output into the working tree."""
    try:
        engine = _load_engine(config, **({"fetch": False, "publish": False} if offline else {}))
        engine.invocation = reconstruct_command_line(run)
        result = engine.run(list(targets) or None)
    except GenProvenanceError as e:
        raise click.ClickException(str(e)) from e

    for target_result in result.targets.values():
        click.secho(f"{target_result.target_id}:", bold=True)
        for outcome in target_result.files:
            if outcome.status == "fast-forward":
                continue
            moved = f" (generated as {outcome.generated_path})" if outcome.generated_path else ""
            click.secho(f"  {outcome.status.value:<12} {outcome.path}{moved}", fg=status_color(outcome.status.value))
            for region in outcome.conflicts:
                click.echo(f"               lines {region.start_line}-{region.end_line}: {region.message}")
        if target_result.commit:
            published = "published" if target_result.published else "not published"
            click.echo(f"  snapshot {target_result.commit[:12]} ({published})")
        if target_result.error is not None:
            click.secho(f"  error: {target_result.error}", fg="red", err=True)

    if not result.ok:
        sys.exit(1)


@cli.command(name="scan")
@click.argument("roots", nargs=-1, required=True, type=click.Path(exists=True, file_okay=False, resolve_path=True))
def scan_command(roots):
    """List generated files found under one or more roots."""
    try:
        if len(roots) == 1:
            results = {roots[0]: scan(roots[0])}
            cross = {}
        else:
            multi = scan_targets({root: root for root in roots})
            results, cross = multi.per_target, multi.cross_target_collisions
    except GenProvenanceError as e:
        raise click.ClickException(str(e)) from e

    collided = False
    for root, scan_result in results.items():
        if len(results) > 1:
            click.secho(f"{root}:", bold=True)
        for generated_id, path in sorted(scan_result.uuid_to_path.items(), key=lambda item: item[1]):
            click.echo(f"{generated_id} {path}")
        for generated_id, paths in sorted(scan_result.collisions.items()):
            collided = True
            click.secho(f"collision {generated_id}: {', '.join(paths)}", fg="red", err=True)
    for generated_id, owners in sorted(cross.items()):
        collided = True
        click.secho(f"cross-root collision {generated_id}: {', '.join(owners)}", fg="red", err=True)

    if collided:
        sys.exit(1)


@cli.command()
@click.option("--repo", "-r", default=".", type=click.Path(exists=True, file_okay=False), help="Path inside the repository")
def refs(repo):
    """List provenance refs and the commits they point to."""
    try:
        store = ProvenanceStore(GitRepository.discover(repo))
        for name, commit in sorted(store.list_refs().items()):
            click.echo(f"{commit} {name}")
    except GenProvenanceError as e:
        raise click.ClickException(str(e)) from e


@cli.command()
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
def conflicts(files):
    """Report conflict marker regions in files."""
    found = False
    for file_name in files:
        with open(file_name, "rb") as f:
            content = decode_text(f.read())
        for region in parse_conflict_markers(content):
            found = True
            click.echo(f"{file_name}:{region.start_line}-{region.end_line}: {region.message}")
    if found:
        sys.exit(1)


@cli.command()
@click.argument("config", type=click.Path(exists=True, dir_okay=False, resolve_path=True))
@click.argument("target")
@click.option("--max-lines", default=0, type=int, help="Truncate the file list (0 = no limit)")
def status(config, target, max_lines):
    """Show generated files moved, deleted or modified since the last run."""
    try:
        engine = _load_engine(config, fetch=False)
        target_config = engine.config.target(target)
        output_dir = engine.config.output_path(target_config)
        scan_result = scan(output_dir) if output_dir.is_dir() else None
        state = engine.healer.provenance_state(target)
        summary = detect_file_changes(engine.healer, target, output_dir, scan_result) if scan_result else None
    except GenProvenanceError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"provenance: {state.value}")
    if summary is None or summary.is_empty():
        click.echo("No changes to generated files.")
    else:
        click.echo(summary.format_summary(max_lines))


@cli.command()
@click.argument("config", type=click.Path(exists=True, dir_okay=False, resolve_path=True))
@click.argument("target")
@click.argument("path")
def diff(config, target, path):
    """Show the diff between the pristine and the current version of a file."""
    try:
        engine = _load_engine(config)
        output_dir = engine.config.output_path(engine.config.target(target))
        rel_path = to_posix_relpath(path)
        file_diff = compute_file_diff(engine.healer, target, output_dir, rel_path, _working_id(output_dir, rel_path))
    except (GenProvenanceError, ValueError) as e:
        raise click.ClickException(str(e)) from e

    if file_diff.diff_text.startswith("("):
        click.echo(file_diff.diff_text)
    elif not file_diff.has_changes:
        click.echo("No custom code detected in this file.")
    else:
        click.echo(file_diff.diff_text, nl=False)


@cli.command()
@click.argument("config", type=click.Path(exists=True, dir_okay=False, resolve_path=True))
@click.argument("target")
@click.argument("path")
def pristine(config, target, path):
    """Print the pristine (generated) version of a file."""
    try:
        engine = _load_engine(config)
        output_dir = engine.config.output_path(engine.config.target(target))
        rel_path = to_posix_relpath(path)
        generated_id = _working_id(output_dir, rel_path)
        if generated_id is not None:
            content, found = engine.healer.read_pristine(target, generated_id)
        else:
            content, found = engine.healer.read_pristine_at(target, rel_path)
    except (GenProvenanceError, ValueError) as e:
        raise click.ClickException(str(e)) from e

    if not found:
        raise click.ClickException(f"No pristine version of {path} for target {target}")
    click.echo(decode_text(content), nl=False)


@cli.command()
@click.argument("config", type=click.Path(exists=True, dir_okay=False, resolve_path=True))
@click.argument("target")
@click.argument("paths", nargs=-1)
@click.option("--all", "restore_all", is_flag=True, default=False, help="Restore every modified generated file")
def restore(config, target, paths, restore_all):
    """Discard hand edits by restoring files to their pristine version."""
    if not paths and not restore_all:
        raise click.UsageError("Give at least one PATH or --all")
    try:
        engine = _load_engine(config)
        output_dir = engine.config.output_path(engine.config.target(target))
        rel_paths = [to_posix_relpath(p) for p in paths]
        if restore_all and output_dir.is_dir():
            summary = detect_file_changes(engine.healer, target, output_dir, scan(output_dir))
            rel_paths.extend(p for p in summary.modified if p not in rel_paths)
        for rel_path in rel_paths:
            if restore_pristine(engine.healer, target, output_dir, rel_path, _working_id(output_dir, rel_path)):
                click.echo(f"Restored {rel_path} to pristine version")
            else:
                click.secho(f"No pristine version of {rel_path}", fg="yellow", err=True)
    except (GenProvenanceError, ValueError) as e:
        raise click.ClickException(str(e)) from e


if __name__ == "__main__":
    cli()
