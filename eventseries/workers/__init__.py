# eventseries/workers/__init__.py
"""
Фоновые задачи Celery: ежедневное продление серий.
Воркер и beat запускаются с ``-A eventseries.workers.tasks``.
"""
__all__: list[str] = ["tasks"]
