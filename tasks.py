"""Development tasks using invoke."""

from invoke import task


@task
def install(c):
    """Install the package in development mode."""
    print("📚 Installing dependencies...")
    c.run("pip install -e '.[dev]'")


@task
def test(c, verbose=False):
    """Run the tests that do not need radicle binaries."""
    cmd = "pytest -m 'not e2e'"
    if verbose:
        cmd += " -v"
    print("🧪 Running tests...")
    c.run(cmd)


@task
def test_e2e(c, verbose=False):
    """Run end-to-end tests against real peers."""
    cmd = "pytest -m e2e tests/e2e"
    if verbose:
        cmd += " -v"
    print("🧪 Running end-to-end tests...")
    c.run(cmd)


@task
def test_cov(c):
    """Run tests with coverage reporting."""
    print("🧪 Running tests with coverage...")
    c.run("pytest -m 'not e2e' --cov=src/upstream_devnet --cov-report=html --cov-report=term")


@task
def build_proxy(c):
    """Build upstream-proxy and upstream-proxy-dev."""
    print("🔨 Building proxy binaries...")
    c.run("cargo build --bin upstream-proxy --bin upstream-proxy-dev")


@task
def git_server(c, name="upstream-git-server-test", port=8778):
    """Run the git-server test container in the background."""
    print(f"🚀 Starting git server on port {port}...")
    c.run(
        f"docker run --detach --rm --init --name {name} -p {port}:8778 "
        "gcr.io/radicle-services/git-server:latest --allow-unauthorized-keys"
    )


@task
def lint(c):
    """Run linting tools."""
    print("🔍 Running linters...")
    c.run("flake8 src/ tests/")
    c.run("mypy src/")


@task
def format_code(c):
    """Format code with black and isort."""
    print("🎨 Formatting code...")
    c.run("black src/ tests/")
    c.run("isort src/ tests/")


@task
def clean(c):
    """Clean up build artifacts, caches and devnet state."""
    print("🧹 Cleaning up...")
    c.run("rm -rf build/ dist/ *.egg-info/ .pytest_cache/ .coverage htmlcov/ sandbox/devnet/")
    c.run("find . -type d -name __pycache__ -exec rm -rf {} +", warn=True)
    c.run("find . -type d -name '*--state' -exec rm -rf {} +", warn=True)
