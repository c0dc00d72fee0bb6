"""Run the emu-pool server with ``python -m emupool``."""

from emupool.main import run

if __name__ == "__main__":
    run()
