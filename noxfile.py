"""Nox sessions for the relay hub."""

import nox

nox.options.sessions = ["tests", "lint"]
PYTHON = "3.11"


@nox.session(python=PYTHON)
def tests(session):
    """Run the suite with branch coverage over the relay_hub package."""
    session.install("-e", ".[dev]")
    session.run(
        "pytest",
        "--cov=relay_hub",
        "--cov-branch",
        "--cov-report=term-missing",
        "--cov-fail-under=80",
        *session.posargs,
    )


@nox.session(python=PYTHON)
def lint(session):
    """Check style with ruff."""
    session.install("ruff>=0.1.0")
    session.run("ruff", "check", "relay_hub", "scripts", "tests")
    session.run("ruff", "format", "--check", "relay_hub", "scripts", "tests")


@nox.session(python=PYTHON, name="format")
def format_code(session):
    """Apply ruff formatting and autofixes."""
    session.install("ruff>=0.1.0")
    session.run("ruff", "format", "relay_hub", "scripts", "tests")
    session.run("ruff", "check", "--fix", "relay_hub", "scripts", "tests")
