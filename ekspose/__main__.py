"""
CLI entry point, when used as a module: `python -m ekspose`.

Useful for debugging in the IDEs (use the start-mode "Module", module "ekspose").
"""
from ekspose import cli

if __name__ == '__main__':
    cli.main()
