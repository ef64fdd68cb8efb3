# Importing the package registers every table on Base.metadata
from edugrade.models.grade_column import GradeColumn, GradeColumnType  # noqa
from edugrade.models.student_grade import StudentGradeRecord  # noqa
from edugrade.models.exam import Exam, ExamQuestion, ExamStatus, QuestionType  # noqa
from edugrade.models.exam_response import AttemptStatus, ExamResponse  # noqa
