"""
Management command to deliver due notifications (dispatch worker).
"""
import logging
import time

from django.core.management.base import BaseCommand

from ordering.infra.dispatcher import NotificationDispatcher


logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Send due notification emails and schedule retries for failed ones'

    def add_arguments(self, parser):
        parser.add_argument(
            '--limit',
            type=int,
            default=None,
            help='Maximum number of tasks to attempt in one sweep',
        )
        parser.add_argument(
            '--loop',
            action='store_true',
            help='Run in loop (for production)',
        )
        parser.add_argument(
            '--interval',
            type=int,
            default=10,
            help='Interval between sweeps in seconds',
        )

    def handle(self, *args, **options):
        limit = options['limit']
        interval = options['interval']

        dispatcher = self.get_dispatcher()
        try:
            if not options['loop']:
                self._sweep(dispatcher, limit, always=True)
                return

            self.stdout.write(f'Starting notification dispatcher in loop mode (interval: {interval}s)')
            try:
                while True:
                    try:
                        self._sweep(dispatcher, limit)
                    except Exception:
                        # Tasks this sweep left due are picked up by the next one.
                        logger.exception("notification_sweep_failed")
                    self.pause(interval)
            except KeyboardInterrupt:
                self.stdout.write(self.style.WARNING('Stopped by user'))
        finally:
            dispatcher.close()

    def get_dispatcher(self):
        return NotificationDispatcher()

    def pause(self, interval):
        time.sleep(interval)

    def _sweep(self, dispatcher, limit, always=False):
        report = dispatcher.dispatch_due(limit=limit)
        if always or report.claimed or report.released:
            self.stdout.write(
                self.style.SUCCESS(
                    f'Sent {report.sent}, failed {report.failed}, '
                    f'exhausted {report.exhausted}, released {report.released}'
                )
            )
