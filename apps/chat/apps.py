from django.apps import AppConfig


class ChatConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.chat'
    label = 'chat'
    verbose_name = 'Chat'

    # Process-wide realtime core, built once the app registry is ready
    runtime = None

    def ready(self):
        from .runtime import build_runtime

        self.runtime = build_runtime()
