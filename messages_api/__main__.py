from messages_api.main import run

run()
