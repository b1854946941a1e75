"""Initial database schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:12:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # Create assessments table
    op.create_table(
        'assessments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('course_id', sa.String(36), nullable=False),
        sa.Column('instructor_id', sa.String(36), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('published_at', sa.DateTime(), nullable=True),
        sa.Column('total_questions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('mcq_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('msq_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('subjective_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('time_limit_minutes', sa.Integer(), nullable=True),
        sa.Column('passing_score', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now())
    )
    op.create_index('ix_assessments_course_id', 'assessments', ['course_id'])

    # Create questions table
    op.create_table(
        'questions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('assessment_id', sa.String(36), sa.ForeignKey('assessments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('question_number', sa.Integer(), nullable=False),
        sa.Column('question_type', sa.String(20), nullable=False),
        sa.Column('question_text', sa.Text(), nullable=False),
        sa.Column('points', sa.Float(), nullable=False, server_default='1'),
        sa.Column('difficulty', sa.String(20), nullable=True),
        sa.Column('bloom_level', sa.String(20), nullable=True),
        sa.Column('topic_id', sa.String(36), nullable=True),
        sa.Column('subtopic_id', sa.String(36), nullable=True),
        sa.Column('explanation', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now())
    )
    op.create_index('idx_questions_assessment', 'questions', ['assessment_id', 'question_number'])

    # Create question_options table
    op.create_table(
        'question_options',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('question_id', sa.String(36), sa.ForeignKey('questions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('option_label', sa.String(10), nullable=False),
        sa.Column('option_text', sa.Text(), nullable=False),
        sa.Column('is_correct', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint('question_id', 'option_label', name='uq_question_options_question_label')
    )

    # Create question_bank table
    op.create_table(
        'question_bank',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('course_id', sa.String(36), nullable=False),
        sa.Column('question_type', sa.String(20), nullable=False),
        sa.Column('question_text', sa.Text(), nullable=False),
        sa.Column('points', sa.Float(), nullable=False, server_default='1'),
        sa.Column('difficulty', sa.String(20), nullable=True),
        sa.Column('bloom_level', sa.String(20), nullable=True),
        sa.Column('topic_id', sa.String(36), nullable=True),
        sa.Column('subtopic_id', sa.String(36), nullable=True),
        sa.Column('explanation', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now())
    )
    op.create_index(
        'idx_question_bank_filters', 'question_bank',
        ['course_id', 'difficulty', 'bloom_level', 'question_type']
    )

    # Create question_bank_options table
    op.create_table(
        'question_bank_options',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('question_bank_id', sa.String(36), sa.ForeignKey('question_bank.id', ondelete='CASCADE'), nullable=False),
        sa.Column('option_label', sa.String(10), nullable=False),
        sa.Column('option_text', sa.Text(), nullable=False),
        sa.Column('is_correct', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint('question_bank_id', 'option_label', name='uq_question_bank_options_question_label')
    )

    # Create enrollments table
    op.create_table(
        'enrollments',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('student_id', sa.String(36), nullable=False),
        sa.Column('course_id', sa.String(36), nullable=False),
        sa.Column('enrolled_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('student_id', 'course_id', name='uq_enrollments_student_course')
    )

    # Create student_attempts table
    op.create_table(
        'student_attempts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('assessment_id', sa.String(36), sa.ForeignKey('assessments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('student_id', sa.String(36), nullable=False),
        sa.Column('enrollment_id', sa.String(36), sa.ForeignKey('enrollments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('submitted_at', sa.DateTime(), nullable=True),
        sa.Column('is_completed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('score', sa.Float(), nullable=True),
        sa.Column('total_points', sa.Float(), nullable=True),
        sa.Column('percentage', sa.Integer(), nullable=True),
        sa.Column('time_taken_minutes', sa.Integer(), nullable=True)
    )
    op.create_index(
        'idx_student_attempts_student_assessment', 'student_attempts',
        ['student_id', 'assessment_id']
    )

    # Create student_answers table
    op.create_table(
        'student_answers',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('attempt_id', sa.String(36), sa.ForeignKey('student_attempts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('question_id', sa.String(36), nullable=False),
        sa.Column('selected_option_ids', sa.JSON(), nullable=True),
        sa.Column('text_answer', sa.Text(), nullable=True),
        sa.Column('is_correct', sa.Boolean(), nullable=True),
        sa.Column('points_earned', sa.Float(), nullable=False, server_default='0'),
        sa.Column('feedback', sa.Text(), nullable=True),
        sa.Column('time_taken_seconds', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('attempt_id', 'question_id', name='uq_student_answers_attempt_question')
    )

    # Create student_topic_performance table
    op.create_table(
        'student_topic_performance',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('student_id', sa.String(36), nullable=False),
        sa.Column('topic_id', sa.String(36), nullable=False),
        sa.Column('subtopic_id', sa.String(36), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('correct_answers', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_attempted_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint(
            'student_id', 'topic_id', 'subtopic_id',
            name='uq_student_topic_performance_student_topic_subtopic'
        )
    )

    # One topic-level row (NULL subtopic) per student and topic
    op.create_index(
        'uq_student_topic_performance_topic_level',
        'student_topic_performance',
        ['student_id', 'topic_id'],
        unique=True,
        postgresql_where=sa.text('subtopic_id IS NULL'),
        sqlite_where=sa.text('subtopic_id IS NULL')
    )


def downgrade():
    op.drop_table('student_topic_performance')
    op.drop_table('student_answers')
    op.drop_table('student_attempts')
    op.drop_table('enrollments')
    op.drop_table('question_bank_options')
    op.drop_table('question_bank')
    op.drop_table('question_options')
    op.drop_table('questions')
    op.drop_table('assessments')
