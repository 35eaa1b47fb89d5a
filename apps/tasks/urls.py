"""
Task API URLs.
"""
from django.urls import path
from apps.tasks.views import TaskListView, TaskDetailView

app_name = 'tasks'

urlpatterns = [
    path('tasks', TaskListView.as_view(), name='task-list'),
    path('tasks/<uuid:task_id>', TaskDetailView.as_view(), name='task-detail'),
]
