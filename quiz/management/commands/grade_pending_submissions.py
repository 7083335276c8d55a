from django.core.management.base import BaseCommand, CommandError

from quiz import engine
from quiz.models import Quiz


class Command(BaseCommand):
    help = "Grade quiz submissions that were submitted but never graded."

    def add_arguments(self, parser):
        parser.add_argument("--quiz", type=int, help="Only grade submissions of this quiz id")

    def handle(self, *args, **options):
        quiz = None
        if options.get("quiz"):
            quiz = Quiz.objects.filter(pk=options["quiz"]).first()
            if quiz is None:
                raise CommandError(f"Quiz {options['quiz']} does not exist")

        graded, failed = engine.grade_pending(quiz)
        self.stdout.write(self.style.SUCCESS(f"Graded {len(graded)} submission(s)."))
        if failed:
            raise CommandError(f"Failed to grade submission(s): {', '.join(map(str, failed))}")
