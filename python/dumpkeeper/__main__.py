from dumpkeeper.cli import main

main()
