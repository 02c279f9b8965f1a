"""Command-line interface for the dispersion solver.

Usage:
    lindisp verify config.json
    lindisp map config.json --output map.npz
    lindisp refine config.json --guess 0.5 -0.01
    mpirun -n 4 lindisp --mpi scan config.json --output scan
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
import numpy as np

logger = logging.getLogger(__name__)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option("--mpi", "use_mpi", is_flag=True, help="Distribute the integrals over MPI ranks.")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, use_mpi: bool) -> None:
    """lindisp: linear dispersion solver for gyrotropic plasmas."""
    from lindisp.core.cluster import MPICluster, SerialCluster

    cluster = MPICluster() if use_mpi else SerialCluster()
    level = logging.DEBUG if verbose else logging.INFO
    if not cluster.is_coordinator:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    ctx.obj = cluster


def _echo(cluster, message: str) -> None:
    if cluster.is_coordinator:
        click.echo(message)


def _load(config_file: str):
    """Read the configuration and every species distribution it references."""
    from lindisp.config import DispersionConfig
    from lindisp.species import Species

    config = DispersionConfig.from_file(config_file)
    base = Path(config_file).resolve().parent
    species = []
    for entry in config.species:
        path = Path(entry.distribution)
        if not path.is_absolute():
            path = base / path
        species.append(Species.from_npz(path, entry.params()))
    return config, species


def _solver(cluster, config_file: str):
    from lindisp.dispersion import DispersionSolver

    config, species = _load(config_file)
    return config, DispersionSolver(config, species, cluster)


def _format_omega(omega: complex) -> str:
    return f"{omega.real:+.8e} {omega.imag:+.8e}i"


@cli.command()
@click.argument("config_file", type=click.Path(exists=True))
@click.pass_obj
def verify(cluster, config_file: str) -> None:
    """Verify a configuration file and its distributions."""
    from lindisp.species import distribution_moments

    try:
        config, species = _load(config_file)
    except (ValueError, OSError) as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)

    _echo(cluster, "Configuration is valid:")
    _echo(cluster, f"  kperp: {config.kperp:.4e}  kpar: {config.kpar:.4e}  v_A: {config.v_A:.4e}")
    for i, sp in enumerate(species):
        moments = distribution_moments(sp)
        _echo(
            cluster,
            f"  Species {i} ({sp.kind.value}): m={sp.params.mass:.4e} q={sp.params.charge:+.3f} "
            f"n={sp.params.density:.4e} grid={sp.grid.shape} "
            f"norm={moments['integral']:.6f} j_par={moments['parallel_current']:.3e}",
        )
    if config.map_search is not None:
        m = config.map_search
        _echo(cluster, f"  Map: {m.n_real}x{m.n_imag} over Re[{m.omega_min}, {m.omega_max}] "
                       f"Im[{m.gamma_min}, {m.gamma_max}]")
    _echo(cluster, f"  Scans: {[s.kind for s in config.scans] or 'none'}")


@cli.command("map")
@click.argument("config_file", type=click.Path(exists=True))
@click.option("--output", "-o", type=str, default=None, help="Write the map and roots to an .npz file.")
@click.pass_obj
def map_cmd(cluster, config_file: str, output: str | None) -> None:
    """Evaluate |D| over the frequency window and refine its minima."""
    from lindisp.roots.map_search import map_search

    try:
        config, solver = _solver(cluster, config_file)
        if config.map_search is None:
            raise ValueError("configuration has no map_search section")
    except (ValueError, OSError) as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)

    result = map_search(solver, config.map_search, config.secant, quiet=not cluster.is_coordinator)
    _echo(cluster, f"{len(result.seeds)} seeds, {len(result.roots)} roots")
    for i, root in enumerate(result.roots):
        flag = "" if root.converged else "  (not converged)"
        _echo(cluster, f"  root {i}: {_format_omega(root.omega)}  |D|={abs(root.value):.3e}{flag}")

    if output and cluster.is_coordinator:
        fmap = result.frequency_map
        np.savez(
            output,
            omega=fmap.omega,
            dispersion=fmap.values,
            magnitude=fmap.magnitude,
            roots=np.array([r.omega for r in result.roots], dtype=np.complex128),
        )
        click.echo(f"Map written to {output}")


@cli.command()
@click.argument("config_file", type=click.Path(exists=True))
@click.option("--guess", nargs=2, type=float, multiple=True, help="Initial guess: Re Im (repeatable).")
@click.pass_obj
def refine(cluster, config_file: str, guess: tuple[tuple[float, float], ...]) -> None:
    """Refine initial frequency guesses with the secant solver."""
    from lindisp.roots.map_search import refine_roots

    try:
        config, solver = _solver(cluster, config_file)
    except (ValueError, OSError) as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)

    seeds = [complex(re, im) for re, im in (guess or config.initial_guesses)]
    if not seeds:
        click.echo("No initial guesses given (use --guess or initial_guesses)", err=True)
        sys.exit(1)

    roots = refine_roots(solver, seeds, config.secant, quiet=not cluster.is_coordinator)
    for i, root in enumerate(roots):
        flag = "" if root.converged else "  (not converged)"
        _echo(cluster, f"  root {i}: {_format_omega(root.omega)}  |D|={abs(root.value):.3e}{flag}")
    if cluster.is_coordinator and solver.last_susceptibility is not None:
        logger.debug("Last susceptibility:\n%s", solver.last_susceptibility)


def _save_scan(path: str, rows: list) -> None:
    np.savez(
        path,
        kperp=np.array([r[0] for r in rows]),
        kpar=np.array([r[1] for r in rows]),
        roots=np.array([r[2] for r in rows], dtype=np.complex128),
    )
    click.echo(f"Scan written to {path}")


@cli.command()
@click.argument("config_file", type=click.Path(exists=True))
@click.option("--output", "-o", type=str, default=None,
              help="Prefix for per-scan .npz files (<prefix>_<kind>.npz).")
@click.pass_obj
def scan(cluster, config_file: str, output: str | None) -> None:
    """Follow roots along every configured wavevector scan."""
    from lindisp.roots.map_search import map_search, refine_roots
    from lindisp.roots.scan import follow_roots, follow_roots_double

    try:
        config, solver = _solver(cluster, config_file)
        if not config.scans:
            raise ValueError("configuration has no scans")
    except (ValueError, OSError) as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)

    quiet = not cluster.is_coordinator
    if config.map_search is not None:
        roots = [r.omega for r in map_search(solver, config.map_search, config.secant, quiet=quiet).roots]
    else:
        seeds = [complex(re, im) for re, im in config.initial_guesses]
        roots = [r.omega for r in refine_roots(solver, seeds, config.secant, quiet=quiet)]
    _echo(cluster, f"Following {len(roots)} roots")

    if config.double_scan:
        outer, inner = config.scans
        rows = []
        try:
            for point in follow_roots_double(solver, roots, outer, inner, config.secant):
                step = point.inner
                if point.output:
                    rows.append((step.kperp, step.kpar, step.roots))
                    _echo(
                        cluster,
                        f"  {outer.kind} {point.outer} / {inner.kind} {step.step}: "
                        f"kperp={step.kperp:.5e} kpar={step.kpar:.5e} "
                        + " ".join(_format_omega(r) for r in step.roots),
                    )
        except (RuntimeError, ValueError) as exc:
            click.echo(f"Double scan failed: {exc}", err=True)
            sys.exit(1)
        if output and cluster.is_coordinator and rows:
            _save_scan(f"{output}_{outer.kind}_{inner.kind}.npz", rows)
        return

    for scan_cfg in config.scans:
        solver.set_wavevector(config.kperp, config.kpar)
        rows = []
        try:
            for step in follow_roots(solver, roots, scan_cfg, config.secant):
                if step.output:
                    rows.append((step.kperp, step.kpar, step.roots))
                    _echo(
                        cluster,
                        f"  {scan_cfg.kind} step {step.step}: kperp={step.kperp:.5e} "
                        f"kpar={step.kpar:.5e} "
                        + " ".join(_format_omega(r) for r in step.roots),
                    )
        except (RuntimeError, ValueError) as exc:
            click.echo(f"Scan '{scan_cfg.kind}' failed: {exc}", err=True)
            sys.exit(1)

        if output and cluster.is_coordinator and rows:
            _save_scan(f"{output}_{scan_cfg.kind}.npz", rows)


if __name__ == "__main__":
    cli()
