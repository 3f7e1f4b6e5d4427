from changeloop.api.cli.main import main_sync

main_sync()
