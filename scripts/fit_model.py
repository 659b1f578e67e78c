#!/usr/bin/env python
"""
Simulate misclassified outcome data and fit the model by EM or MCMC.
"""

from pathlib import Path

import numpy as np
import pandas as pd
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from misclassification_service.core.data import (
    dataset_to_frame,
    load_csv_to_dataset,
)
from misclassification_service.core.data_models import Dataset
from misclassification_service.core.exceptions import (
    InvalidParameterShape,
    InvalidPriorShape,
)
from misclassification_service.estimation.config import (
    ConvergenceConfig,
    EstimationConfig,
    LabelSwitchConfig,
    SamplingConfig,
)
from misclassification_service.estimation.em import EMEstimator
from misclassification_service.estimation.enums import (
    EMMethod,
    LabelSwitchCriterion,
    PriorFamily,
)
from misclassification_service.estimation.mcmc import (
    MCMCEstimator,
    PriorSpecification,
)
from misclassification_service.estimation.mcmc.priors import FAMILY_PARAMETERS
from misclassification_service.simulation import simulate_dataset

BASE_DIR = Path(__file__).parent.parent.absolute()
DEFAULT_OUTPUT_DIR = BASE_DIR / "data" / "fits"

console = Console(force_terminal=True, legacy_windows=True)
app = typer.Typer()


def parse_values(text: str) -> list[float]:
    """Parse a comma separated list of numbers."""
    try:
        return [float(v) for v in text.split(",") if v.strip()]
    except ValueError as e:
        raise typer.BadParameter(f"Expected comma separated numbers, got '{text}'") from e


def parse_gamma(text: str) -> np.ndarray:
    """Parse 'g11,g21,...;g12,g22,...' into a (q+1, 2) matrix [coefficient, j]."""
    columns = [parse_values(part) for part in text.split(";")]
    if len(columns) != 2 or len(columns[0]) != len(columns[1]):
        raise typer.BadParameter(
            "gamma needs two ';' separated vectors of equal length (j=1;j=2)"
        )
    return np.array(columns, dtype=np.float64).T


def load_dataset(input_path: Path) -> Dataset:
    if not input_path.exists():
        console.print(f"[red]File not found: {input_path}[/red]")
        raise typer.Exit(1)
    if input_path.suffix != ".csv":
        console.print("[red]Only .csv files are supported[/red]")
        raise typer.Exit(1)

    console.print("[dim]Loading data...[/dim]")
    try:
        return load_csv_to_dataset(input_path)
    except ValueError as e:
        console.print(f"[red]Error loading CSV: {e}[/red]")
        raise typer.Exit(1) from e


def print_frame(df: pd.DataFrame, title: str) -> None:
    table = Table(title=title)
    for column in df.columns:
        table.add_column(str(column))
    for row in df.itertuples(index=False):
        table.add_row(
            *[f"{v:.4f}" if isinstance(v, float) else str(v) for v in row]
        )
    console.print(table)


def save_frame(df: pd.DataFrame, output_path: Path) -> None:
    """Save a table to csv."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=False)


@app.command()
def simulate(
    output_path: Path = typer.Argument(..., help="Where to write the CSV"),
    n: int = typer.Option(1000, "-n", help="Number of subjects"),
    beta: str = typer.Option("0.5,1.0", help="True outcome coefficients"),
    gamma: str = typer.Option(
        "2.0,1.0;-0.5,1.0", help="Observation coefficients, j=1;j=2"
    ),
    seed: int | None = typer.Option(
        None, "-s", "--seed", help="Random seed for reproducibility"
    ),
) -> None:
    """Simulate a dataset with columns ystar, x*, z*."""
    rng = np.random.default_rng(seed)
    simulated = simulate_dataset(n, parse_values(beta), parse_gamma(gamma), rng)
    save_frame(dataset_to_frame(simulated.dataset), output_path)
    console.print(
        Panel(
            f"[bold green]Data saved[/bold green]\n\n"
            f"Output: [cyan]{output_path}[/cyan]\n"
            f"Subjects: [cyan]{n}[/cyan]\n"
            f"Misclassified: [cyan]{simulated.misclassification_rate:.1%}[/cyan]",
            title="Done",
        )
    )


@app.command()
def em(
    input_path: Path = typer.Argument(
        ..., help="Path to CSV file (columns: ystar, x1.., z1..)"
    ),
    beta_start: str | None = typer.Option(
        None, help="Starting beta, comma separated (default all ones)"
    ),
    gamma_start: str | None = typer.Option(
        None, help="Starting gamma, j=1;j=2 (default all ones)"
    ),
    method: EMMethod = typer.Option(EMMethod.SQUAREM, help="EM acceleration"),
    criterion: LabelSwitchCriterion = typer.Option(
        LabelSwitchCriterion.INTERCEPT, help="Label switching criterion"
    ),
    output_dir: Path = typer.Option(
        DEFAULT_OUTPUT_DIR, "-o", "--output-dir", help="Output directory"
    ),
) -> None:
    """Fit the model by EM and save the estimates."""
    dataset = load_dataset(input_path)
    n_beta = dataset.n_x_covariates + 1
    n_gamma = dataset.n_z_covariates + 1
    beta0 = parse_values(beta_start) if beta_start else np.ones(n_beta)
    gamma0 = parse_gamma(gamma_start) if gamma_start else np.ones((n_gamma, 2))

    console.print(
        Panel(
            f"[bold]Fit by EM[/bold]\n\n"
            f"Input: [cyan]{input_path}[/cyan]\n"
            f"Subjects: [cyan]{dataset.n_subjects}[/cyan]\n"
            f"X covariates: [cyan]{dataset.n_x_covariates}[/cyan]\n"
            f"Z covariates: [cyan]{dataset.n_z_covariates}[/cyan]",
            title="Configuration",
        )
    )

    config = EstimationConfig(
        convergence=ConvergenceConfig(method=method),
        label_switch=LabelSwitchConfig(criterion=criterion),
    )
    console.print("[dim]Fitting...[/dim]")
    try:
        result = EMEstimator(config).fit(dataset, beta0, gamma0)
    except InvalidParameterShape as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e

    console.print(
        f"  {result.convergence_status.value} "
        f"({result.n_iterations} iterations, LL={result.log_likelihood:.2f})"
    )
    if result.label_switched:
        console.print("  [yellow]Classes relabeled (label switching)[/yellow]")

    estimates = result.to_frame()
    print_frame(estimates, "EM estimates")
    if result.naive is not None:
        print_frame(result.naive.to_frame(), "Naive logistic regression")
    if result.perfect_sensitivity is not None:
        print_frame(result.perfect_sensitivity.to_frame(), "Perfect sensitivity")

    output_path = output_dir / f"{input_path.stem}_em.csv"
    save_frame(estimates, output_path)
    console.print(
        Panel(
            f"[bold green]Estimates saved[/bold green]\n\n"
            f"Output: [cyan]{output_path}[/cyan]",
            title="Done",
        )
    )


@app.command()
def mcmc(
    input_path: Path = typer.Argument(
        ..., help="Path to CSV file (columns: ystar, x1.., z1..)"
    ),
    prior: PriorFamily = typer.Option(PriorFamily.UNIFORM, help="Prior family"),
    prior_values: str = typer.Option(
        "-10,10",
        help="Prior parameters in family order (uniform: lower,upper; "
        "normal: mean,std; double_exponential: loc,scale; t: loc,scale,df)",
    ),
    n_chains: int = typer.Option(4, help="Number of chains"),
    n_samples: int = typer.Option(2000, help="Kept draws per chain"),
    burn_in: int = typer.Option(1000, help="Burn-in draws per chain"),
    n_jobs: int = typer.Option(1, help="Chains run concurrently"),
    seed: int | None = typer.Option(
        None, "-s", "--seed", help="Random seed for reproducibility"
    ),
    output_dir: Path = typer.Option(
        DEFAULT_OUTPUT_DIR, "-o", "--output-dir", help="Output directory"
    ),
) -> None:
    """Sample the posterior by MCMC and save summaries and draws."""
    dataset = load_dataset(input_path)
    n_beta = dataset.n_x_covariates + 1
    n_gamma = dataset.n_z_covariates + 1

    names = FAMILY_PARAMETERS[prior]
    values = parse_values(prior_values)
    if len(values) != len(names):
        console.print(
            f"[red]{prior.value} prior needs {len(names)} values: {', '.join(names)}[/red]"
        )
        raise typer.Exit(1)
    prior_spec = PriorSpecification.from_scalars(
        prior, n_beta, n_gamma, **dict(zip(names, values, strict=True))
    )

    config = EstimationConfig(
        sampling=SamplingConfig(
            n_chains=n_chains, n_samples=n_samples, burn_in=burn_in, n_jobs=n_jobs
        )
    )
    console.print(
        Panel(
            f"[bold]Fit by MCMC[/bold]\n\n"
            f"Input: [cyan]{input_path}[/cyan]\n"
            f"Subjects: [cyan]{dataset.n_subjects}[/cyan]\n"
            f"Prior: [cyan]{prior.value}({prior_values})[/cyan]\n"
            f"Chains: [cyan]{n_chains} x ({burn_in} + {n_samples})[/cyan]",
            title="Configuration",
        )
    )

    console.print("[dim]Sampling...[/dim]")
    rng = np.random.default_rng(seed)
    try:
        result = MCMCEstimator(config, rng=rng).fit(dataset, prior_spec)
    except InvalidPriorShape as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e

    print_frame(result.posterior_means, "Posterior summary")
    print_frame(result.naive_posterior_means, "Naive posterior summary")
    if result.nonconvergent_chains:
        console.print(
            f"[yellow]Chains with degenerate acceptance: "
            f"{result.nonconvergent_chains}[/yellow]"
        )

    summary_path = output_dir / f"{input_path.stem}_mcmc_summary.csv"
    draws_path = output_dir / f"{input_path.stem}_mcmc_draws.csv"
    save_frame(result.posterior_means, summary_path)
    save_frame(result.posterior_draws, draws_path)
    console.print(
        Panel(
            f"[bold green]Posterior saved[/bold green]\n\n"
            f"Summary: [cyan]{summary_path}[/cyan]\n"
            f"Draws: [cyan]{draws_path}[/cyan]",
            title="Done",
        )
    )


if __name__ == "__main__":
    app()
