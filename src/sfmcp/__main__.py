"""python -m sfmcp"""

from sfmcp.cli.app import main

main()
