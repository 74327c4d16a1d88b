"""
Series package.

Сервис и репозиторий импортируются по полному пути
(``eventseries.core.series.service``), чтобы ``recurrence`` мог
импортировать ``exceptions`` без циклов.
"""

__all__: list[str] = []
