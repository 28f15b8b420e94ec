from worldseed.cli import main

main()
