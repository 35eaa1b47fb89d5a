"""
Base Celery task classes with enhanced logging and error handling.
"""
import logging
from celery import Task
from apps.core.sentry_utils import add_breadcrumb, capture_exception, start_transaction

logger = logging.getLogger(__name__)


class LoggedTask(Task):
    """
    Base task class with enhanced logging and Sentry integration.

    This task class automatically:
    - Logs task start and completion
    - Logs task failures with error details
    - Logs retry attempts with reason
    - Sends failures to Sentry with context
    - Creates Sentry transactions for performance monitoring
    """

    SENSITIVE_KEYS = {
        'password', 'token', 'secret', 'authorization', 'email', 'user_agent',
    }

    def __call__(self, *args, **kwargs):
        task_id = self.request.id
        task_name = self.name

        transaction = start_transaction(
            name=f"task.{task_name}",
            op="celery.task"
        )

        try:
            logger.info(
                f"Task started: {task_name}",
                extra={
                    'task_id': task_id,
                    'task_name': task_name,
                    'task_args': self._sanitize_args(args),
                    'task_kwargs': self._sanitize_kwargs(kwargs),
                }
            )
            add_breadcrumb(
                category="task",
                message=f"Task started: {task_name}",
                data={'task_id': task_id, 'task_name': task_name}
            )

            result = super().__call__(*args, **kwargs)

            logger.info(
                f"Task completed: {task_name}",
                extra={
                    'task_id': task_id,
                    'task_name': task_name,
                    'result': self._sanitize_result(result),
                }
            )

            if transaction:
                transaction.set_status("ok")
                transaction.finish()

            return result

        except Exception as exc:
            logger.error(
                f"Task failed: {task_name}",
                extra={
                    'task_id': task_id,
                    'task_name': task_name,
                    'exception': str(exc),
                },
                exc_info=True
            )
            add_breadcrumb(
                category="task",
                message=f"Task failed: {task_name}",
                level="error",
                data={'task_id': task_id, 'task_name': task_name, 'exception': str(exc)}
            )
            capture_exception(
                exc,
                task={'task_id': task_id, 'task_name': task_name}
            )

            if transaction:
                transaction.set_status("internal_error")
                transaction.finish()

            raise

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        """
        Log task retry attempts.
        """
        retry_count = self.request.retries

        logger.warning(
            f"Task retry: {self.name} (attempt {retry_count}/{self.max_retries})",
            extra={
                'task_id': task_id,
                'task_name': self.name,
                'retry_count': retry_count,
                'max_retries': self.max_retries,
                'exception': str(exc),
            }
        )

        super().on_retry(exc, task_id, args, kwargs, einfo)

    def _sanitize_value(self, value):
        if isinstance(value, dict):
            return {
                key: '********' if any(s in key.lower() for s in self.SENSITIVE_KEYS) else self._sanitize_value(item)
                for key, item in value.items()
            }
        return value

    def _sanitize_args(self, args):
        """
        Sanitize task arguments for logging (mask sensitive keys in dict payloads).
        """
        if not args:
            return []

        sanitized = [self._sanitize_value(arg) for arg in args]
        if len(sanitized) > 10:
            sanitized = sanitized[:10] + ['... (truncated)']

        return sanitized

    def _sanitize_kwargs(self, kwargs):
        if not kwargs:
            return {}
        return self._sanitize_value(kwargs)

    def _sanitize_result(self, result):
        if result is None:
            return None

        result_str = str(result)
        if len(result_str) > 200:
            return result_str[:200] + '... (truncated)'

        return result_str
