from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from jobs import splitter
from jobs.errors import PipelineError


class Command(BaseCommand):
    help = "Split a source already in the bucket and dispatch its chunks (runs the split inline)."

    def add_arguments(self, parser):
        parser.add_argument("job_id", help="Job id (the request id)")
        parser.add_argument("source_key", help="S3 key of the source asset")
        parser.add_argument("--chunk-seconds", type=float, default=None,
                            help="Chunk duration (default: JOBS_DEFAULT_CHUNK_SECONDS)")
        parser.add_argument("--duration", type=float, default=None,
                            help="Source duration in seconds; probed when omitted")

    def handle(self, *args, **options):
        chunk_seconds = options["chunk_seconds"] or settings.JOBS_DEFAULT_CHUNK_SECONDS
        try:
            count = splitter.split(options["job_id"], options["source_key"], chunk_seconds, options["duration"])
        except (PipelineError, ValueError) as e:
            raise CommandError(str(e)) from e
        self.stdout.write(self.style.SUCCESS(f"Job {options['job_id']}: {count} chunks"))
