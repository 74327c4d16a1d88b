"""
Event series service.

• ``eventseries.core.recurrence`` – разбор и развёртка правил повторения.
• ``eventseries.core.series`` – серии, вхождения, водяной знак генерации.
• ``eventseries.workers`` – Celery-задача периодического продления.
"""
