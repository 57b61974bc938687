from qfund.cli import main

main()
