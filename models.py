from __future__ import annotations

from sqlalchemy import Boolean, Column, Float, Integer, String, Text, UniqueConstraint

from db import Base


class IdCounter(Base):
    __tablename__ = "id_counters"

    key = Column(String, primary_key=True)
    nextValue = Column(Integer, nullable=False, default=1)


class User(Base):
    __tablename__ = "users"

    userId = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True, index=True)
    fullName = Column(Text, nullable=False, default="")
    role = Column(String, nullable=False, index=True)
    # Per-user capability override; empty means "use the role's".
    permissionsJson = Column(Text, nullable=False, default="")
    employeeId = Column(String, nullable=False, default="", index=True)
    status = Column(String, nullable=False, default="ACTIVE", index=True)
    lastLoginAt = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Role(Base):
    __tablename__ = "roles"

    roleCode = Column(String, primary_key=True)
    roleName = Column(String, nullable=False, default="")
    permissionsJson = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default="ACTIVE")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Permission(Base):
    __tablename__ = "permissions"
    __table_args__ = (UniqueConstraint("permType", "permKey", name="uq_permissions_type_key"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    permType = Column(String, nullable=False)
    permKey = Column(String, nullable=False)
    rolesCsv = Column(Text, nullable=False, default="")
    enabled = Column(Boolean, nullable=False, default=True)
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Setting(Base):
    __tablename__ = "settings"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False, default="")
    type = Column(String, nullable=False, default="")
    scope = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Session(Base):
    __tablename__ = "sessions"

    sessionId = Column(String, primary_key=True)
    tokenHash = Column(String, nullable=False, unique=True, index=True)
    userId = Column(String, nullable=False, default="", index=True)
    email = Column(String, nullable=False, default="")
    role = Column(String, nullable=False, default="", index=True)
    issuedAt = Column(Text, nullable=False, default="")
    expiresAt = Column(Text, nullable=False, default="")
    lastSeenAt = Column(Text, nullable=False, default="")
    revokedAt = Column(Text, nullable=False, default="")
    revokedBy = Column(String, nullable=False, default="")


class AuditLog(Base):
    __tablename__ = "audit_log"

    logId = Column(String, primary_key=True)
    entityType = Column(String, nullable=False, default="", index=True)
    entityId = Column(String, nullable=False, default="", index=True)
    action = Column(String, nullable=False, default="", index=True)
    fromState = Column(String, nullable=False, default="")
    toState = Column(String, nullable=False, default="")
    stageTag = Column(String, nullable=False, default="", index=True)
    remark = Column(Text, nullable=False, default="")
    actorUserId = Column(String, nullable=False, default="", index=True)
    actorRole = Column(String, nullable=False, default="", index=True)
    actorEmail = Column(Text, nullable=False, default="")
    at = Column(Text, nullable=False, default="", index=True)
    correlationId = Column(String, nullable=False, default="", index=True)
    metaJson = Column(Text, nullable=False, default="")


class JobOpening(Base):
    __tablename__ = "job_openings"

    jobId = Column(String, primary_key=True)
    title = Column(Text, nullable=False, default="")
    department = Column(Text, nullable=False, default="")
    location = Column(Text, nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    openings = Column(Integer, nullable=False, default=1)
    status = Column(String, nullable=False, default="OPEN", index=True)
    flowId = Column(String, nullable=False, default="", index=True)
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class InterviewFlow(Base):
    __tablename__ = "interview_flows"

    flowId = Column(String, primary_key=True)
    jobId = Column(String, nullable=False, unique=True, index=True)
    name = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class InterviewRound(Base):
    __tablename__ = "interview_rounds"
    __table_args__ = (UniqueConstraint("flowId", "roundNumber", name="uq_interview_rounds_flow_round"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    flowId = Column(String, nullable=False, index=True)
    roundNumber = Column(Integer, nullable=False)
    roundName = Column(Text, nullable=False, default="")
    assignedRole = Column(String, nullable=False, default="")
    assignedInterviewersJson = Column(Text, nullable=False, default="")
    questionsJson = Column(Text, nullable=False, default="")
    enabled = Column(Boolean, nullable=False, default=True)


class Candidate(Base):
    __tablename__ = "candidates"
    __table_args__ = (UniqueConstraint("jobId", "email", name="uq_candidates_job_email"),)

    candidateId = Column(String, primary_key=True)
    jobId = Column(String, nullable=False, index=True)
    name = Column(Text, nullable=False, default="")
    email = Column(String, nullable=False, default="", index=True)
    phone = Column(String, nullable=False, default="")
    position = Column(Text, nullable=False, default="")
    source = Column(String, nullable=False, default="MANUAL", index=True)
    referredBy = Column(String, nullable=False, default="")
    resumeUrl = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default="APPLIED", index=True)
    currentRound = Column(Integer, nullable=False, default=0)
    # {jobTitle, hiredDate, jobId, candidateId} of the application that hired this person.
    hiredForOtherJobJson = Column(Text, nullable=False, default="")
    employeeId = Column(String, nullable=False, default="", index=True)
    rejectionReason = Column(Text, nullable=False, default="")
    rejectedFromStatus = Column(String, nullable=False, default="")
    rejectedAt = Column(Text, nullable=False, default="")
    hiredAt = Column(Text, nullable=False, default="")
    # Optimistic concurrency token; bumped on every transition.
    version = Column(Integer, nullable=False, default=1)
    createdAt = Column(Text, nullable=False, default="", index=True)
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Interview(Base):
    __tablename__ = "interviews"

    interviewId = Column(String, primary_key=True)
    candidateId = Column(String, nullable=False, index=True)
    jobId = Column(String, nullable=False, default="", index=True)
    round = Column(Integer, nullable=False, default=1)
    roundName = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default="SCHEDULED", index=True)
    scheduledAt = Column(Text, nullable=False, default="")
    durationMinutes = Column(Integer, nullable=False, default=30)
    mode = Column(String, nullable=False, default="")
    location = Column(Text, nullable=False, default="")
    interviewerId = Column(String, nullable=False, default="", index=True)
    responsesJson = Column(Text, nullable=False, default="")
    overallScore = Column(Float, nullable=True)
    recommendation = Column(String, nullable=False, default="")
    feedback = Column(Text, nullable=False, default="")
    cancelReason = Column(Text, nullable=False, default="")
    submittedBy = Column(String, nullable=False, default="")
    submittedAt = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class Offer(Base):
    __tablename__ = "offers"

    offerId = Column(String, primary_key=True)
    candidateId = Column(String, nullable=False, index=True)
    jobId = Column(String, nullable=False, default="", index=True)
    status = Column(String, nullable=False, default="DRAFT", index=True)
    designation = Column(Text, nullable=False, default="")
    ctc = Column(Float, nullable=True)
    joiningDate = Column(Text, nullable=False, default="")
    expiryDate = Column(Text, nullable=False, default="", index=True)
    notes = Column(Text, nullable=False, default="")
    previousOfferId = Column(String, nullable=False, default="", index=True)
    isRevision = Column(Boolean, nullable=False, default=False)
    revisionNumber = Column(Integer, nullable=False, default=0)
    revisionChangesJson = Column(Text, nullable=False, default="")
    sentAt = Column(Text, nullable=False, default="")
    respondedAt = Column(Text, nullable=False, default="")
    rejectionReason = Column(Text, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class BackgroundVerification(Base):
    __tablename__ = "background_verifications"

    bgvId = Column(String, primary_key=True)
    candidateId = Column(String, nullable=False, unique=True, index=True)
    offerId = Column(String, nullable=False, default="")
    overallStatus = Column(String, nullable=False, default="NOT_STARTED", index=True)
    decisionRemark = Column(Text, nullable=False, default="")
    decidedAt = Column(Text, nullable=False, default="")
    decidedBy = Column(String, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class VerificationItem(Base):
    __tablename__ = "verification_items"
    __table_args__ = (UniqueConstraint("bgvId", "itemType", "category", name="uq_verification_items_bgv_type_cat"),)

    itemId = Column(String, primary_key=True)
    bgvId = Column(String, nullable=False, index=True)
    itemType = Column(String, nullable=False)
    category = Column(String, nullable=False)
    status = Column(String, nullable=False, default="PENDING")
    # Contact number or address text, depending on itemType.
    detailsJson = Column(Text, nullable=False, default="")
    remarks = Column(Text, nullable=False, default="")
    rejectionReason = Column(Text, nullable=False, default="")
    verifiedAt = Column(Text, nullable=False, default="")
    verifiedBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")


class CandidateDocument(Base):
    __tablename__ = "candidate_documents"

    documentId = Column(String, primary_key=True)
    candidateId = Column(String, nullable=False, index=True)
    category = Column(String, nullable=False, index=True)
    fileName = Column(Text, nullable=False, default="")
    url = Column(Text, nullable=False, default="")
    uploadedAt = Column(Text, nullable=False, default="")
    uploadedBy = Column(String, nullable=False, default="")


class Employee(Base):
    __tablename__ = "employees"

    employeeId = Column(String, primary_key=True)
    candidateId = Column(String, nullable=False, unique=True, index=True)
    jobId = Column(String, nullable=False, default="", index=True)
    name = Column(Text, nullable=False, default="")
    email = Column(String, nullable=False, default="", index=True)
    phone = Column(String, nullable=False, default="")
    designation = Column(Text, nullable=False, default="")
    joiningDate = Column(Text, nullable=False, default="")
    managerId = Column(String, nullable=False, default="", index=True)
    status = Column(String, nullable=False, default="ACTIVE", index=True)
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")


class Goal(Base):
    __tablename__ = "goals"

    goalId = Column(String, primary_key=True)
    employeeId = Column(String, nullable=False, index=True)
    title = Column(Text, nullable=False, default="")
    type = Column(String, nullable=False, default="")
    kpi = Column(Text, nullable=False, default="")
    target = Column(Text, nullable=False, default="")
    weightage = Column(Float, nullable=False, default=0)
    startDate = Column(Text, nullable=False, default="")
    endDate = Column(Text, nullable=False, default="")
    progress = Column(Float, nullable=False, default=0)
    status = Column(String, nullable=False, default="draft", index=True)
    cycle = Column(String, nullable=False, default="", index=True)
    achievements = Column(Text, nullable=False, default="")
    challenges = Column(Text, nullable=False, default="")
    managerNotes = Column(Text, nullable=False, default="")
    hrNotes = Column(Text, nullable=False, default="")
    kraId = Column(String, nullable=False, default="", index=True)
    assignedBy = Column(String, nullable=False, default="")
    decidedAt = Column(Text, nullable=False, default="")
    decidedBy = Column(String, nullable=False, default="")
    completedAt = Column(Text, nullable=False, default="")
    completedBy = Column(String, nullable=False, default="")
    createdAt = Column(Text, nullable=False, default="")
    createdBy = Column(String, nullable=False, default="")
    updatedAt = Column(Text, nullable=False, default="")
    updatedBy = Column(String, nullable=False, default="")
