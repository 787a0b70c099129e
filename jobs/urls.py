from django.urls import path
from .views import JobChunksView, JobDetailView, PresignUploadView, SubmitJobView

urlpatterns = [
    path("jobs/", SubmitJobView.as_view(), name="job_submit"),
    path("jobs/<str:job_id>/", JobDetailView.as_view(), name="job_detail"),
    path("jobs/<str:job_id>/chunks/", JobChunksView.as_view(), name="job_chunks"),
    path("uploads/presign/", PresignUploadView.as_view(), name="uploads_presign"),
]
