from relreg.cli.app import main

main()
