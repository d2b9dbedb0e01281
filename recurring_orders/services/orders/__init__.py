"""
Order lifecycle and recurring schedule package.

OrderLifecycleService (service) handles single orders, BulkScheduleOperator
(bulk) applies schedule actions to batches and DueDeliveryProcessor
(due_deliveries) turns due schedules into delivery orders.
"""
