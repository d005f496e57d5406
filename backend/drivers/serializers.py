from rest_framework import serializers

from drivers.models import DriverApplication

DOCUMENT_FIELDS = [
    "first_name", "last_name", "dob", "photo_face",
    "citizenship_front", "citizenship_back", "citizenship_issue_date", "citizenship_no", "pan_no",
    "vehicle_type", "vehicle_brand", "vehicle_model", "vehicle_color", "vehicle_year", "plate_no", "vehicle_photo",
    "license_no", "license_expiry", "license_photo",
    "billbook_pages", "billbook_reg_page", "billbook_renew_date", "billbook_renew_page",
]


class FileReferenceField(serializers.Field):
    """
    Stored-file reference(s). Accepts a string or a list of strings and
    stores them comma-joined, the way multi-page documents are kept.
    """

    def to_internal_value(self, data):
        if isinstance(data, str):
            return data.strip()
        if isinstance(data, (list, tuple)) and all(isinstance(item, str) for item in data):
            return ",".join(item.strip() for item in data if item.strip())
        raise serializers.ValidationError("Expected a file reference or a list of file references.")

    def to_representation(self, value):
        return value


class DriverApplicationSubmitSerializer(serializers.ModelSerializer):
    """
    Serializer for a driver application submission.
    """
    userId = serializers.IntegerField(required=False, allow_null=True, write_only=True)
    photo_face = FileReferenceField(required=False)
    citizenship_front = FileReferenceField(required=False)
    citizenship_back = FileReferenceField(required=False)
    vehicle_photo = FileReferenceField(required=False)
    license_photo = FileReferenceField(required=False)
    billbook_pages = FileReferenceField(required=False)
    billbook_reg_page = FileReferenceField(required=False)
    billbook_renew_page = FileReferenceField(required=False)

    class Meta:
        model = DriverApplication
        fields = ["userId"] + DOCUMENT_FIELDS

    def validate(self, data):
        request = self.context.get("request")
        user_id = data.pop("userId", None)
        if user_id is not None and request is not None and user_id != request.user.id:
            raise serializers.ValidationError({"userId": "Does not match the authenticated user"})
        return data


class DriverApplicationSerializer(serializers.ModelSerializer):
    """
    Full application as shown to administrators.
    """
    username = serializers.CharField(source="user.username", read_only=True)

    class Meta:
        model = DriverApplication
        fields = ["application_id", "user", "username"] + DOCUMENT_FIELDS + [
            "status", "submitted_at", "decided_at", "decided_by",
        ]
        read_only_fields = fields


class ApplicationDecisionSerializer(serializers.Serializer):
    """
    Serializer for an administrator's verdict on an application.
    """
    applicationId = serializers.IntegerField(min_value=1)
    userId = serializers.IntegerField(required=False, allow_null=True)
    verdict = serializers.CharField()
