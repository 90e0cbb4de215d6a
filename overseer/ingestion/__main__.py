from overseer.ingestion.cli import main

main()
