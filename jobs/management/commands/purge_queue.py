from django.core.management.base import BaseCommand

from jobs import queue


class Command(BaseCommand):
    help = "Discard every message waiting on the work queue."

    def handle(self, *args, **options):
        dropped = queue.purge()
        self.stdout.write(f"Purged {dropped} message(s)")
