from rest_framework import serializers
from .models import User

class UserSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ['id', 'username', 'first_name', 'phone_number', 'role', 'account_status']
        read_only_fields = ['id', 'role', 'account_status']

class RegisterSerializer(serializers.ModelSerializer):
    password = serializers.CharField(write_only=True)

    class Meta:
        model = User
        fields = ['username', 'password', 'first_name', 'phone_number']

    def create(self, validated_data):
        # self-registration always yields a customer; riders and admins are provisioned by staff
        user = User.objects.create_user(
            username=validated_data['username'],
            password=validated_data['password'],
            first_name=validated_data.get('first_name', ''),
            phone_number=validated_data.get('phone_number'),
            role=User.Roles.CUSTOMER,
        )
        return user
