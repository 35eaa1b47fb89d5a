"""
Task serializers.
"""
from rest_framework import serializers
from apps.tasks.models import Task


class TaskSerializer(serializers.ModelSerializer):
    """Serializer for reading tasks."""

    owner_id = serializers.UUIDField(source='owner.id', read_only=True)

    class Meta:
        model = Task
        fields = ['id', 'title', 'description', 'completed', 'owner_id', 'created_at', 'updated_at']
        read_only_fields = fields


class TaskWriteSerializer(serializers.ModelSerializer):
    """Serializer for creating and updating tasks."""

    class Meta:
        model = Task
        fields = ['title', 'description', 'completed']

    def validate_title(self, value):
        if not value.strip():
            raise serializers.ValidationError("Title cannot be empty.")
        return value.strip()
