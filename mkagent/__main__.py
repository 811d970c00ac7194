"""Entry point for python -m mkagent"""

from mkagent.agent import main

if __name__ == '__main__':
    main()
