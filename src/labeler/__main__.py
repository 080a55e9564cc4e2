from src.labeler.cli import main

main()
