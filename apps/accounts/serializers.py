from rest_framework import serializers
from .models import User


class UserSerializer(serializers.ModelSerializer):
    """Basic user serializer for profile display."""

    can_manage_finances = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            'id',
            'email',
            'display_name',
            'role',
            'can_manage_finances',
            'created_at',
            'last_login',
        ]
        read_only_fields = fields

    def get_can_manage_finances(self, obj):
        return obj.can_manage_finances()
