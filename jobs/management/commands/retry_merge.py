from django.core.management.base import BaseCommand, CommandError

from jobs.merger import retry_merge


class Command(BaseCommand):
    help = "Re-run the merge of a FAILED job whose chunks all converted."

    def add_arguments(self, parser):
        parser.add_argument("job_ids", nargs="+")

    def handle(self, *args, **options):
        refused = []
        for job_id in options["job_ids"]:
            if retry_merge(job_id):
                self.stdout.write(f"Merge re-queued for {job_id}")
            else:
                refused.append(job_id)
        if refused:
            raise CommandError(f"Not eligible for merge retry: {', '.join(refused)}")
