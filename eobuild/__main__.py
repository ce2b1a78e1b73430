from eobuild.cli import main

main()
