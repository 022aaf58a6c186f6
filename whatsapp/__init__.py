"""
WhatsApp integration.

- broker / trigger_service: caller side, used by the API and workers
- commands / service_manager / health: the `!systrack` command interpreter
- bot: the chat-client process (command replies + pub/sub bridge)
- queue_service: producer for the WhatsApp message/command queues
"""
