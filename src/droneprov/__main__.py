from droneprov.cli import main

main()
