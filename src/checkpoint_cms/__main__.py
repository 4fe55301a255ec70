"""
checkpoint-cms - entry point for python -m checkpoint_cms
"""

from checkpoint_cms.cli import main


if __name__ == "__main__":
    main()
