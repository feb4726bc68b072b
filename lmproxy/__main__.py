"""Run the proxy: ``python -m lmproxy``."""
from lmproxy.main import run

if __name__ == "__main__":
    run()
