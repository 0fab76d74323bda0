from django.db import transaction
from rest_framework import serializers

from .grading import grade_levels_warnings
from .models import GradeLevel, GradingSystem


class AssessmentRecordSerializer(serializers.Serializer):
    """One student's scores. Bounds are checked by the save engine so that a
    bad record fails its batch instead of the whole request."""

    student_id = serializers.IntegerField()
    enrollment_id = serializers.IntegerField(required=False, allow_null=True)
    ca1 = serializers.FloatField(required=False, allow_null=True, default=None)
    ca2 = serializers.FloatField(required=False, allow_null=True, default=None)
    ca3 = serializers.FloatField(required=False, allow_null=True, default=None)
    exam = serializers.FloatField(required=False, allow_null=True, default=None)
    is_absent = serializers.BooleanField(required=False, default=False)
    is_exempt = serializers.BooleanField(required=False, default=False)


class SaveAssessmentsSerializer(serializers.Serializer):
    term_id = serializers.IntegerField()
    subject_id = serializers.IntegerField()
    class_term_id = serializers.IntegerField()
    assessments = AssessmentRecordSerializer(many=True, allow_empty=False)


class AssessmentUpdateSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    ca1 = serializers.FloatField(required=False, allow_null=True)
    ca2 = serializers.FloatField(required=False, allow_null=True)
    ca3 = serializers.FloatField(required=False, allow_null=True)
    exam = serializers.FloatField(required=False, allow_null=True)
    is_absent = serializers.BooleanField(required=False)
    is_exempt = serializers.BooleanField(required=False)


class BulkUpdateAssessmentsSerializer(serializers.Serializer):
    term_id = serializers.IntegerField()
    subject_id = serializers.IntegerField()
    updates = AssessmentUpdateSerializer(many=True, allow_empty=False)


class GradeLevelSerializer(serializers.ModelSerializer):
    class Meta:
        model = GradeLevel
        fields = ['id', 'grading_system', 'min_score', 'max_score', 'grade', 'remark']

    def validate(self, attrs):
        min_score = attrs.get('min_score', getattr(self.instance, 'min_score', None))
        max_score = attrs.get('max_score', getattr(self.instance, 'max_score', None))
        if min_score is not None and max_score is not None and min_score > max_score:
            raise serializers.ValidationError("Min score cannot be greater than max score.")

        grading_system = attrs.get('grading_system')
        request = self.context.get('request')
        if grading_system and request and request.user.role != 'super_admin':
            if grading_system.school_id != request.user.school_id:
                raise serializers.ValidationError("Grading system must belong to your school.")
        return attrs


class NestedGradeLevelSerializer(serializers.ModelSerializer):
    class Meta:
        model = GradeLevel
        fields = ['id', 'min_score', 'max_score', 'grade', 'remark']


class GradingSystemSerializer(serializers.ModelSerializer):
    """Grading system with its bands and any overlap/gap warnings"""

    levels = NestedGradeLevelSerializer(many=True, required=False)
    warnings = serializers.SerializerMethodField()
    school_name = serializers.CharField(source='school.name', read_only=True)

    class Meta:
        model = GradingSystem
        fields = ['id', 'name', 'description', 'pass_mark', 'is_default', 'school', 'school_name',
                  'levels', 'warnings', 'created_at', 'updated_at']
        read_only_fields = ['school', 'created_at', 'updated_at']

    def get_warnings(self, obj):
        return grade_levels_warnings([
            {'min_score': level.min_score, 'max_score': level.max_score, 'grade': level.grade}
            for level in obj.levels.all()
        ])

    def validate_levels(self, levels):
        for level in levels:
            if level['min_score'] > level['max_score']:
                raise serializers.ValidationError(
                    f"Grade {level['grade']}: min score cannot be greater than max score."
                )
        return levels

    @transaction.atomic
    def create(self, validated_data):
        levels = validated_data.pop('levels', [])
        school = validated_data['school']
        # First system of a school becomes its default
        if not GradingSystem.objects.filter(school=school).exists():
            validated_data['is_default'] = True
        grading_system = GradingSystem.objects.create(**validated_data)
        for level in levels:
            GradeLevel.objects.create(grading_system=grading_system, **level)
        return grading_system

    @transaction.atomic
    def update(self, instance, validated_data):
        levels = validated_data.pop('levels', None)
        instance = super().update(instance, validated_data)
        if levels is not None:
            instance.levels.all().delete()
            for level in levels:
                GradeLevel.objects.create(grading_system=instance, **level)
        return instance
