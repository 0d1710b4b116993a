from nounish_ingest.cli.pipeline_cli import main

main()
