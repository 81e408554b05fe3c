"""``python -m pipepool`` — used by the manager to spawn workers."""

from pipepool.cli.app import app

if __name__ == "__main__":
    app(prog_name="pipepool")
